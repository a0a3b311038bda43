import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, Optional

import httpx

from crm_activity.core.config import settings
from crm_activity.core.timestamps import resolve_timezone
from crm_activity.services.aggregator import ActivityAggregator
from crm_activity.services.fetch_client import ActivityFetchClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Optional[str]], ActivityFetchClient]


def default_client_factory(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ClientFactory:
    def factory(bearer_token: Optional[str]) -> ActivityFetchClient:
        return ActivityFetchClient(bearer_token=bearer_token, transport=transport)

    return factory


@dataclass
class _Entry:
    aggregator: ActivityAggregator
    last_used: float


class SessionRegistry:
    """One ``ActivityAggregator`` per bearer token.

    Sessions keep their channels (and therefore latest-request-wins
    state) across HTTP requests from the same caller. Requests without
    a token share the anonymous session, provided the activity API
    resolves a user for them.

    Sessions idle for longer than *idle_seconds* are closed on the next
    lookup, and the least recently used one is closed once more than
    *max_sessions* are open.
    """

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        *,
        max_sessions: Optional[int] = None,
        idle_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client_factory = client_factory or default_client_factory()
        self._max_sessions = max_sessions or settings.SESSION_MAX_COUNT
        self._idle_seconds = (
            idle_seconds if idle_seconds is not None else settings.SESSION_IDLE_SECONDS
        )
        self._clock = clock
        self._sessions: "OrderedDict[str, _Entry]" = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, bearer_token: Optional[str]) -> bool:
        return (bearer_token or "") in self._sessions

    async def get(self, bearer_token: Optional[str]) -> ActivityAggregator:
        key = bearer_token or ""
        async with self._lock:
            now = self._clock()
            await self._close_idle(now, keep=key)

            entry = self._sessions.get(key)
            if entry is not None:
                entry.last_used = now
                self._sessions.move_to_end(key)
                return entry.aggregator

            client = self._client_factory(bearer_token)
            try:
                user = await client.current_user()
            except BaseException:
                await client.aclose()
                raise
            session = ActivityAggregator(
                client, user, tz=resolve_timezone(settings.LOCAL_TIMEZONE)
            )
            self._sessions[key] = _Entry(session, now)
            logger.info("Opened activity session for user %s (%s)", user.id, user.role.value)

            while len(self._sessions) > self._max_sessions:
                _, evicted = self._sessions.popitem(last=False)
                logger.info(
                    "Evicting least recently used session for user %s",
                    evicted.aggregator.user.id,
                )
                await self._shutdown(evicted.aggregator)
            return session

    async def _close_idle(self, now: float, keep: str) -> None:
        expired: List[str] = [
            key
            for key, entry in self._sessions.items()
            if key != keep and now - entry.last_used > self._idle_seconds
        ]
        for key in expired:
            entry = self._sessions.pop(key)
            logger.info("Closing idle session for user %s", entry.aggregator.user.id)
            await self._shutdown(entry.aggregator)

    @staticmethod
    async def _shutdown(session: ActivityAggregator) -> None:
        await session.close()
        await session.client.aclose()

    async def close(self, bearer_token: Optional[str]) -> None:
        entry = self._sessions.pop(bearer_token or "", None)
        if entry is not None:
            await self._shutdown(entry.aggregator)

    async def close_all(self) -> None:
        for key in list(self._sessions):
            await self.close(key or None)
