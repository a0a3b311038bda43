"""Latest-request-wins fan-out over named query channels.

Each channel owns one cancellation token. Issuing a batch rotates the
token (cancelling the previous one), fans the batch's fetches out
concurrently and, once they settle, commits the merged result only if
the token is still the channel's current one. Superseded batches are
dropped without touching ``loading`` or ``error``: the newer batch owns
those flags.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Hashable, List, Optional, Sequence, Tuple, Union

from crm_activity.core.exceptions import ActivityFetchError
from crm_activity.schemas.activity import Activity
from crm_activity.schemas.common import ActivityKind
from crm_activity.schemas.filters import DoNotFetch, QueryFilters, ScopeInterval
from crm_activity.services.cancellation import CancellationToken
from crm_activity.services.fetch_client import ActivityFetchClient
from crm_activity.services.merge import merge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchRequest:
    """One (kind × interval × filters) fetch; results merge into ``pool``."""

    pool: str
    kind: ActivityKind
    interval: ScopeInterval
    filters: QueryFilters
    statuses: Tuple[str, ...] = ()


class BatchStatus(str, Enum):
    committed = "committed"
    superseded = "superseded"
    failed = "failed"
    skipped = "skipped"
    cancelled = "cancelled"


@dataclass(frozen=True)
class BatchOutcome:
    channel: str
    generation: int
    status: BatchStatus
    request_count: int = 0
    error: Optional[str] = None
    reason: Optional[str] = None


@dataclass(frozen=True)
class ChannelSnapshot:
    """Read-only view of a channel handed to the rendering layer."""

    name: str
    generation: int
    loading: bool
    error: Optional[str]
    pools: Dict[str, Tuple[Activity, ...]]
    committed_generation: int
    committed_at: Optional[datetime]

    def pool(self, name: str) -> Tuple[Activity, ...]:
        return self.pools.get(name, ())


@dataclass
class _Channel:
    name: str
    generation: int = 0
    token: Optional[CancellationToken] = None
    params_key: Optional[Hashable] = None
    in_flight: Optional["asyncio.Task[BatchOutcome]"] = None
    loading: bool = False
    error: Optional[str] = None
    pools: Dict[str, Tuple[Activity, ...]] = field(default_factory=dict)
    committed_generation: int = 0
    committed_at: Optional[datetime] = None


class RequestOrchestrator:
    """Owns every query channel of one session.

    Single writer: only ``_execute`` (the commit step) and the explicit
    cancel/skip paths write channel state.
    """

    def __init__(
        self,
        client: ActivityFetchClient,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._client = client
        self._clock = clock
        self._channels: Dict[str, _Channel] = {}
        self.batches_issued = 0

    # ------------------------------------------------------------------
    # Channel access
    # ------------------------------------------------------------------

    def _channel(self, name: str) -> _Channel:
        channel = self._channels.get(name)
        if channel is None:
            channel = self._channels[name] = _Channel(name=name)
        return channel

    def snapshot(self, name: str) -> ChannelSnapshot:
        channel = self._channel(name)
        return ChannelSnapshot(
            name=channel.name,
            generation=channel.generation,
            loading=channel.loading,
            error=channel.error,
            pools=dict(channel.pools),
            committed_generation=channel.committed_generation,
            committed_at=channel.committed_at,
        )

    def is_in_flight(self, name: str) -> bool:
        channel = self._channels.get(name)
        return bool(channel and channel.in_flight and not channel.in_flight.done())

    # ------------------------------------------------------------------
    # Issuing batches
    # ------------------------------------------------------------------

    def _rotate(self, channel: _Channel) -> CancellationToken:
        if channel.token is not None:
            channel.token.cancel()
        channel.generation += 1
        channel.token = CancellationToken(channel.name, channel.generation)
        return channel.token

    async def run(
        self,
        name: str,
        requests: Union[Sequence[FetchRequest], DoNotFetch],
        *,
        params_key: Optional[Hashable] = None,
        force: bool = False,
    ) -> BatchOutcome:
        """Issue *requests* on channel *name* and wait for the outcome.

        A ``DoNotFetch`` sentinel supersedes whatever is in flight, empties
        the pools and issues nothing. Re-invoking with the same non-``None``
        *params_key* while a batch is still in flight joins that batch,
        unless *force* is set; forced runs always issue a fresh batch (used
        after mutations).
        """
        channel = self._channel(name)

        if isinstance(requests, DoNotFetch):
            token = self._rotate(channel)
            channel.params_key = None
            channel.loading = False
            channel.error = None
            channel.pools = {}
            logger.debug("Channel %s skipped: %s", name, requests.reason)
            return BatchOutcome(
                name, token.generation, BatchStatus.skipped, reason=requests.reason
            )

        if (
            not force
            and params_key is not None
            and channel.params_key == params_key
            and channel.in_flight is not None
            and not channel.in_flight.done()
        ):
            logger.debug("Channel %s: joining in-flight batch %s", name, channel.token)
            return await asyncio.shield(channel.in_flight)

        token = self._rotate(channel)
        channel.params_key = params_key
        channel.loading = True
        channel.error = None
        self.batches_issued += 1

        batch = asyncio.create_task(self._execute(channel, token, list(requests)))
        channel.in_flight = batch
        return await asyncio.shield(batch)

    async def _execute(
        self,
        channel: _Channel,
        token: CancellationToken,
        requests: List[FetchRequest],
    ) -> BatchOutcome:
        tasks = []
        for request in requests:
            task = asyncio.create_task(
                self._client.fetch(
                    request.kind,
                    request.interval,
                    request.filters,
                    token,
                    statuses=request.statuses,
                )
            )
            token.attach(task)
            tasks.append(task)

        results = await asyncio.gather(*tasks, return_exceptions=True)

        if channel.token is not token or token.cancelled:
            logger.debug("Channel %s: discarding stale batch %s", channel.name, token)
            return BatchOutcome(
                channel.name, token.generation, BatchStatus.superseded, len(requests)
            )

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            return self._fail(channel, token, failures, len(requests))

        grouped: Dict[str, List[List[Activity]]] = {}
        for request, items in zip(requests, results):
            grouped.setdefault(request.pool, []).append(items or [])

        channel.pools = {
            pool: tuple(merge(*lists).values()) for pool, lists in grouped.items()
        }
        channel.committed_generation = token.generation
        channel.committed_at = self._clock()
        channel.loading = False
        channel.error = None
        logger.debug(
            "Channel %s committed generation %d (%d requests)",
            channel.name,
            token.generation,
            len(requests),
        )
        return BatchOutcome(
            channel.name, token.generation, BatchStatus.committed, len(requests)
        )

    def _fail(
        self,
        channel: _Channel,
        token: CancellationToken,
        failures: List[BaseException],
        request_count: int,
    ) -> BatchOutcome:
        """Surface the first failure of the latest batch; keep committed pools."""
        channel.loading = False
        fetch_errors = [f for f in failures if isinstance(f, ActivityFetchError)]
        if fetch_errors:
            channel.error = fetch_errors[0].detail
            logger.warning(
                "Channel %s failed (generation %d): %s",
                channel.name,
                token.generation,
                channel.error,
            )
            return BatchOutcome(
                channel.name,
                token.generation,
                BatchStatus.failed,
                request_count,
                channel.error,
            )

        unexpected = [f for f in failures if not isinstance(f, asyncio.CancelledError)]
        if unexpected:
            channel.error = "Failed to load activities"
            logger.error(
                "Channel %s: unexpected fetch error",
                channel.name,
                exc_info=unexpected[0],
            )
            raise unexpected[0]

        # A fetch was cancelled from outside its token; nothing to show
        return BatchOutcome(
            channel.name, token.generation, BatchStatus.cancelled, request_count
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, name: str) -> None:
        """Cancel the channel's in-flight batch; committed pools stay."""
        channel = self._channels.get(name)
        if channel is None or channel.token is None:
            return
        channel.token.cancel()
        channel.params_key = None
        channel.loading = False

    def cancel_all(self) -> None:
        for name in list(self._channels):
            self.cancel(name)

    async def aclose(self) -> None:
        """Cancel every channel and wait for their batches to wind down."""
        self.cancel_all()
        pending = [
            c.in_flight
            for c in self._channels.values()
            if c.in_flight is not None and not c.in_flight.done()
        ]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
