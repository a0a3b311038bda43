import logging
import math
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple

from crm_activity.core.config import settings
from crm_activity.core.constants import (
    CHANNEL_HISTORY,
    DEFAULT_HISTORY_STATUSES,
    HISTORY_WINDOWS,
    POOL_HISTORY,
    REMINDER_KINDS,
    REMINDER_STATUSES,
)
from crm_activity.core.exceptions import InvalidScopeError
from crm_activity.schemas.activity import Activity
from crm_activity.schemas.common import ActivityKind
from crm_activity.schemas.filters import QueryFilters
from crm_activity.services.orchestrator import (
    BatchOutcome,
    BatchStatus,
    FetchRequest,
    RequestOrchestrator,
)
from crm_activity.services.scope_resolver import rolling_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryPage:
    items: Tuple[Activity, ...]
    page: int
    page_size: int
    total: int
    total_pages: int


class HistoryAggregator:
    """Rolling-window history of calls and e-mails.

    Only the window size and the owning filters hit the network; kind,
    status, page and page-size changes are recomputed locally from the
    last committed batch.
    """

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        *,
        days: Optional[int] = None,
        page_size: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        tz: Optional[tzinfo] = None,
        channel: str = CHANNEL_HISTORY,
    ) -> None:
        self._orchestrator = orchestrator
        self.channel = channel
        self._clock = clock
        self._tz = tz
        self._days = days or settings.HISTORY_DEFAULT_DAYS
        self._check_days(self._days)
        self._owner: Optional[QueryFilters] = None
        self._fetched_key: Optional[Tuple[int, QueryFilters]] = None
        self.kinds: FrozenSet[str] = REMINDER_KINDS
        self.statuses: FrozenSet[str] = DEFAULT_HISTORY_STATUSES
        self.page = 1
        self.page_size = page_size or settings.HISTORY_PAGE_SIZE

    @staticmethod
    def _check_days(days: int) -> None:
        if days not in HISTORY_WINDOWS:
            raise InvalidScopeError(
                f"History window must be one of {', '.join(map(str, HISTORY_WINDOWS))}"
            )

    @property
    def days(self) -> int:
        return self._days

    # ------------------------------------------------------------------
    # Network-backed inputs
    # ------------------------------------------------------------------

    async def load(
        self,
        owner: QueryFilters,
        days: Optional[int] = None,
        *,
        force: bool = False,
    ) -> Optional[BatchOutcome]:
        """Fetch the window for *owner* unless it is already committed.

        Returns ``None`` when nothing needed fetching.
        """
        if days is not None:
            self._check_days(days)
            self._days = days
        self._owner = owner

        key = (self._days, owner)
        if not force and key == self._fetched_key:
            return None

        window = rolling_window(self._days, self._clock())
        requests = [
            FetchRequest(POOL_HISTORY, ActivityKind.CALL, window, owner),
            FetchRequest(POOL_HISTORY, ActivityKind.EMAIL, window, owner),
        ]
        self._fetched_key = key
        logger.debug("Loading %d-day history for %s", self._days, owner.to_params())
        outcome = await self._orchestrator.run(
            self.channel, requests, params_key=(key, window), force=force
        )
        if outcome.status in (BatchStatus.failed, BatchStatus.cancelled):
            # let the next call retry
            if self._fetched_key == key:
                self._fetched_key = None
        return outcome

    async def set_days(self, days: int) -> Optional[BatchOutcome]:
        if self._owner is None:
            self._check_days(days)
            self._days = days
            return None
        return await self.load(self._owner, days)

    def invalidate(self) -> None:
        """Forget the committed window so the next load fetches again."""
        self._fetched_key = None

    async def reload(self) -> Optional[BatchOutcome]:
        if self._owner is None:
            return None
        return await self.load(self._owner, force=True)

    # ------------------------------------------------------------------
    # Client-side inputs
    # ------------------------------------------------------------------

    def set_kinds(self, kinds: Iterable[str]) -> None:
        self.kinds = frozenset(k.upper() for k in kinds) & REMINDER_KINDS
        self.page = 1

    def set_statuses(self, statuses: Iterable[str]) -> None:
        self.statuses = frozenset(s.upper() for s in statuses) & REMINDER_STATUSES
        self.page = 1

    def set_page(self, page: int) -> None:
        self.page = page

    def set_page_size(self, page_size: int) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.page_size = page_size
        self.page = 1

    # ------------------------------------------------------------------
    # Derived view
    # ------------------------------------------------------------------

    def items(self) -> List[Activity]:
        """Committed history, newest first, after kind/status filters.

        An empty kind or status selection means "no filter" on that axis.
        """
        raw = self._orchestrator.snapshot(self.channel).pool(POOL_HISTORY)
        ordered = sorted(raw, key=lambda a: a.local_when(self._tz), reverse=True)
        return [
            item
            for item in ordered
            if (not self.kinds or item.kind.value in self.kinds)
            and (not self.statuses or item.status in self.statuses)
        ]

    def current_page(self) -> HistoryPage:
        filtered = self.items()
        total_pages = max(1, math.ceil(len(filtered) / self.page_size))
        page = min(max(1, self.page), total_pages)
        start = (page - 1) * self.page_size
        return HistoryPage(
            items=tuple(filtered[start : start + self.page_size]),
            page=page,
            page_size=self.page_size,
            total=len(filtered),
            total_pages=total_pages,
        )
