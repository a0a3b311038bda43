import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Dict, List, Optional, Tuple, Union

from crm_activity.core.config import settings
from crm_activity.core.constants import (
    CHANNEL_ASSIGNED,
    CHANNEL_EMPLOYEE,
    CHANNEL_HISTORY,
    CHANNEL_HISTORY_ASSIGNED,
    CHANNEL_HISTORY_EMPLOYEE,
    CHANNEL_LIVE,
    LIVE_MEETING_STATUSES,
    POOL_BY_KIND,
    POOL_CALLS,
    POOL_COMPLETED_MEETINGS,
    POOL_EMAILS,
    POOL_HISTORY,
    POOL_MEETINGS,
    STATUSES_BY_KIND,
)
from crm_activity.core.exceptions import (
    ActivityNotFoundError,
    AmbiguousActivityError,
    InvalidStatusTransitionError,
)
from crm_activity.core.timestamps import local_now
from crm_activity.schemas.activity import Activity
from crm_activity.schemas.common import (
    ActivityKind,
    PanelMode,
    ReminderStatus,
    ScopeName,
    ViewMode,
)
from crm_activity.schemas.filters import (
    DoNotFetch,
    QueryContext,
    QueryFilters,
    UserContext,
    ViewState,
)
from crm_activity.services.debounce import Debouncer
from crm_activity.services.fetch_client import ActivityFetchClient
from crm_activity.services.history import HistoryAggregator, HistoryPage
from crm_activity.services.orchestrator import (
    BatchOutcome,
    ChannelSnapshot,
    FetchRequest,
    RequestOrchestrator,
)
from crm_activity.services.query_builder import build_filter_sets, build_filters
from crm_activity.services.relative_time import (
    AnnotatedActivity,
    RelativeTimeTicker,
    annotate,
)
from crm_activity.services.scope_resolver import panel_scopes, resolve, start_of_day

logger = logging.getLogger(__name__)

_CHANNEL_BY_VIEW: Dict[ViewMode, str] = {
    ViewMode.overview: CHANNEL_LIVE,
    ViewMode.employee: CHANNEL_EMPLOYEE,
    ViewMode.assigned_to: CHANNEL_ASSIGNED,
}

_HISTORY_CHANNEL_BY_VIEW: Dict[ViewMode, str] = {
    ViewMode.overview: CHANNEL_HISTORY,
    ViewMode.employee: CHANNEL_HISTORY_EMPLOYEE,
    ViewMode.assigned_to: CHANNEL_HISTORY_ASSIGNED,
}

_LOOKUP_CHANNELS = tuple(_CHANNEL_BY_VIEW.values()) + tuple(
    _HISTORY_CHANNEL_BY_VIEW.values()
)


@dataclass(frozen=True)
class StatusChange:
    """A committed status transition and the refreshes it triggered."""

    activity: Activity
    status: str
    view: ViewState
    live: BatchOutcome
    history: Optional[BatchOutcome]


LabelsCallback = Callable[[Dict[str, List[AnnotatedActivity]]], None]


class ActivityAggregator:
    """Reminders/meetings overview state for one authenticated session.

    The authenticated user is passed in explicitly; every query is
    derived from it plus the current view state. Dependencies are
    injected via the constructor so tests can drive the clock.
    """

    def __init__(
        self,
        client: ActivityFetchClient,
        user: UserContext,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        tz: Optional[tzinfo] = None,
        debounce_ms: Optional[int] = None,
        tick_seconds: Optional[float] = None,
        overdue_lookback_days: Optional[int] = None,
    ) -> None:
        self._client = client
        self.user = user
        self._tz = tz
        self._clock = clock or (lambda: local_now(tz))
        self._orchestrator = RequestOrchestrator(client, clock=self._clock)
        self._histories: Dict[ViewMode, HistoryAggregator] = {
            mode: HistoryAggregator(
                self._orchestrator, clock=self._clock, tz=tz, channel=channel
            )
            for mode, channel in _HISTORY_CHANNEL_BY_VIEW.items()
        }
        self._debouncer = Debouncer(
            (debounce_ms if debounce_ms is not None else settings.FILTER_DEBOUNCE_MS)
            / 1000
        )
        self._tick_seconds = (
            tick_seconds
            if tick_seconds is not None
            else settings.RELATIVE_TIME_TICK_SECONDS
        )
        self._overdue_lookback_days = (
            overdue_lookback_days
            if overdue_lookback_days is not None
            else settings.OVERDUE_LOOKBACK_DAYS
        )
        self._ticker: Optional[RelativeTimeTicker] = None
        self.labels: Dict[str, List[AnnotatedActivity]] = {}
        # last view issued per channel, replayed after a status change
        self._views: Dict[str, ViewState] = {}

        self.view_mode = ViewMode.overview
        self.panel_mode = PanelMode.day
        self.selected_user_id: Optional[str] = None
        self.search: Optional[str] = None

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def orchestrator(self) -> RequestOrchestrator:
        return self._orchestrator

    @property
    def client(self) -> ActivityFetchClient:
        return self._client

    @property
    def current_view(self) -> ViewState:
        """The session's own view, driven by the ``set_*`` triggers."""
        return ViewState(
            view_mode=self.view_mode,
            panel_mode=self.panel_mode,
            selected_user_id=self.selected_user_id,
            search=self.search,
        )

    def query_context(self, view: Optional[ViewState] = None) -> QueryContext:
        view = view or self.current_view
        return QueryContext(
            role=self.user.role,
            self_id=self.user.id,
            view_mode=view.view_mode,
            selected_user_id=view.selected_user_id,
            search=view.search,
        )

    @property
    def context(self) -> QueryContext:
        return self.query_context()

    @staticmethod
    def channel_for(view: ViewState) -> str:
        return _CHANNEL_BY_VIEW[view.view_mode]

    def history_for(self, view: Optional[ViewState] = None) -> HistoryAggregator:
        """History window of *view*; each view mode keeps its own channel."""
        return self._histories[(view or self.current_view).view_mode]

    @property
    def history(self) -> HistoryAggregator:
        return self.history_for()

    @property
    def live_channel(self) -> str:
        return self.channel_for(self.current_view)

    def now(self) -> datetime:
        return self._clock()

    def snapshot(self, view: Optional[ViewState] = None) -> ChannelSnapshot:
        return self._orchestrator.snapshot(self.channel_for(view or self.current_view))

    def build_requests(
        self, now: datetime, view: Optional[ViewState] = None
    ) -> Union[List[FetchRequest], DoNotFetch]:
        """Plan the live batch for *view* (the session's view by default).

        Per filter set: calls and e-mails for both panel scopes plus
        pending reminders left over from earlier days. Meetings follow
        the primary filter set only; today's completed meetings are kept
        in their own pool so they never leak into the upcoming list.
        """
        view = view or self.current_view
        filter_sets = build_filter_sets(self.query_context(view))
        if isinstance(filter_sets, DoNotFetch):
            return filter_sets

        left, right = panel_scopes(view.panel_mode)
        intervals = [resolve(left, now), resolve(right, now)]
        overdue = resolve(
            ScopeName.overdue, now, overdue_lookback_days=self._overdue_lookback_days
        )

        requests: List[FetchRequest] = []
        for filters in filter_sets:
            for interval in intervals:
                for kind in (ActivityKind.CALL, ActivityKind.EMAIL):
                    requests.append(
                        FetchRequest(POOL_BY_KIND[kind.value], kind, interval, filters)
                    )
            for kind in (ActivityKind.CALL, ActivityKind.EMAIL):
                requests.append(
                    FetchRequest(
                        POOL_BY_KIND[kind.value],
                        kind,
                        overdue,
                        filters,
                        (ReminderStatus.PENDING.value,),
                    )
                )

        primary = filter_sets[0]
        for interval in intervals:
            requests.append(
                FetchRequest(
                    POOL_MEETINGS,
                    ActivityKind.MEETING,
                    interval,
                    primary,
                    LIVE_MEETING_STATUSES,
                )
            )
        if view.panel_mode == PanelMode.day:
            requests.append(
                FetchRequest(
                    POOL_COMPLETED_MEETINGS,
                    ActivityKind.MEETING,
                    intervals[0],
                    primary,
                    ("COMPLETED",),
                )
            )
        return requests

    def history_owner(
        self, view: Optional[ViewState] = None
    ) -> Union[QueryFilters, DoNotFetch]:
        """Filters owning the history window for *view*."""
        ctx = self.query_context(view).model_copy(update={"search": None})
        return build_filters(ctx)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def refresh(
        self, view: Optional[ViewState] = None, *, force: bool = False
    ) -> BatchOutcome:
        """Issue the live batch for *view* on its channel.

        *force* never joins an identical batch already in flight.
        """
        view = view or self.current_view
        channel = self.channel_for(view)
        requests = self.build_requests(self._clock(), view)
        params_key = None if isinstance(requests, DoNotFetch) else tuple(requests)
        self._views[channel] = view
        return await self._orchestrator.run(
            channel, requests, params_key=params_key, force=force
        )

    async def load_history(
        self,
        days: Optional[int] = None,
        *,
        force: bool = False,
        view: Optional[ViewState] = None,
    ) -> Optional[BatchOutcome]:
        view = view or self.current_view
        history = self.history_for(view)
        owner = self.history_owner(view)
        if isinstance(owner, DoNotFetch):
            history.invalidate()
            return await self._orchestrator.run(history.channel, owner)
        self._views[history.channel] = view
        return await history.load(owner, days, force=force)

    async def refresh_all(
        self, view: Optional[ViewState] = None, *, force: bool = False
    ) -> Tuple[BatchOutcome, Optional[BatchOutcome]]:
        live, history = await asyncio.gather(
            self.refresh(view, force=force), self.load_history(force=force, view=view)
        )
        return live, history

    def configure(
        self,
        *,
        view_mode: Union[ViewMode, str, None] = None,
        selected_user_id: Optional[str] = None,
        panel_mode: Union[PanelMode, str, None] = None,
        search: Optional[str] = None,
    ) -> None:
        """Replace the session view in one step without fetching."""
        if view_mode is not None:
            self.view_mode = ViewMode(view_mode)
        if panel_mode is not None:
            self.panel_mode = PanelMode(panel_mode)
        self.selected_user_id = selected_user_id
        self.search = search

    async def set_view(
        self, view_mode: Union[ViewMode, str], selected_user_id: Optional[str] = None
    ) -> Tuple[BatchOutcome, Optional[BatchOutcome]]:
        self.view_mode = ViewMode(view_mode)
        self.selected_user_id = selected_user_id
        return await self.refresh_all()

    async def select_user(
        self, user_id: Optional[str]
    ) -> Tuple[BatchOutcome, Optional[BatchOutcome]]:
        self.selected_user_id = user_id
        return await self.refresh_all()

    async def set_panel_mode(self, panel_mode: Union[PanelMode, str]) -> BatchOutcome:
        self.panel_mode = PanelMode(panel_mode)
        return await self.refresh()

    def set_search(self, text: Optional[str]) -> "asyncio.Task[None]":
        """Record a free-text edit; the refresh runs once typing settles."""
        self.search = text
        return self._debouncer.trigger(self.refresh)

    # ------------------------------------------------------------------
    # Panels and labels
    # ------------------------------------------------------------------

    def panel(
        self,
        scope: Union[ScopeName, str],
        pool: str,
        now: Optional[datetime] = None,
        view: Optional[ViewState] = None,
    ) -> List[AnnotatedActivity]:
        """Items of *pool* that fall in *scope*, earliest first, labelled.

        Reads the channel of *view*. The ``today`` panel also carries
        pending reminders from earlier days so nothing overdue drops out
        of sight.
        """
        now = now or self._clock()
        scope = ScopeName(scope)
        interval = resolve(scope, now, overdue_lookback_days=self._overdue_lookback_days)
        today_start = start_of_day(now)

        selected = []
        for item in self.snapshot(view).pool(pool):
            moment = item.local_when(self._tz)
            if interval.contains(moment):
                selected.append(item)
            elif (
                scope == ScopeName.today
                and item.is_reminder
                and item.status == ReminderStatus.PENDING.value
                and moment < today_start
            ):
                selected.append(item)
        selected.sort(key=lambda a: a.local_when(self._tz))
        return annotate(selected, now, self._tz)

    def annotate_live(self, now: Optional[datetime] = None) -> Dict[str, List[AnnotatedActivity]]:
        """Relabel every committed item; pure, no network."""
        now = now or self._clock()
        snapshot = self.snapshot()
        pools = (POOL_CALLS, POOL_EMAILS, POOL_MEETINGS, POOL_COMPLETED_MEETINGS)
        labels = {pool: annotate(snapshot.pool(pool), now, self._tz) for pool in pools}
        labels[POOL_HISTORY] = annotate(self.history.items(), now, self._tz)
        return labels

    def history_page(
        self, now: Optional[datetime] = None, view: Optional[ViewState] = None
    ) -> Tuple[HistoryPage, List[AnnotatedActivity]]:
        """Current history page of *view* plus labels for its rows."""
        page = self.history_for(view).current_page()
        return page, annotate(page.items, now or self._clock(), self._tz)

    def start_ticker(self, on_labels: Optional[LabelsCallback] = None) -> RelativeTimeTicker:
        """Recompute labels every tick without touching channels or timers."""

        def _on_tick(now: datetime) -> None:
            self.labels = self.annotate_live(now)
            if on_labels is not None:
                on_labels(self.labels)

        if self._ticker is None:
            self._ticker = RelativeTimeTicker(
                _on_tick, self._tick_seconds, clock=self._clock
            )
        self._ticker.start()
        return self._ticker

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def find(
        self,
        activity_id: str,
        kind: Union[ActivityKind, str, None] = None,
        status: Optional[str] = None,
    ) -> Tuple[str, Activity]:
        """Locate *activity_id* in the committed pools of this session.

        Ids are unique per kind only. Without *kind*, a collision across
        kinds is settled by which kinds accept *status*; anything still
        matching several kinds raises ``AmbiguousActivityError``.
        Returns the channel the item was found on and the item.
        """
        activity_id = str(activity_id)
        if kind is not None and not isinstance(kind, ActivityKind):
            kind = ActivityKind(kind.upper())

        matches: Dict[ActivityKind, Tuple[str, Activity]] = {}
        for name in _LOOKUP_CHANNELS:
            for items in self._orchestrator.snapshot(name).pools.values():
                for item in items:
                    if item.id == activity_id and kind in (None, item.kind):
                        matches.setdefault(item.kind, (name, item))

        if not matches:
            raise ActivityNotFoundError(f"Activity {activity_id} is not loaded")
        if len(matches) > 1 and status is not None:
            fitting = {
                k: v
                for k, v in matches.items()
                if status.upper() in STATUSES_BY_KIND[k.value]
            }
            if fitting:
                matches = fitting
        if len(matches) > 1:
            kinds = ", ".join(sorted(k.value for k in matches))
            raise AmbiguousActivityError(
                f"Activity {activity_id} is loaded as {kinds}; pass its kind"
            )
        return next(iter(matches.values()))

    async def transition(
        self,
        activity_id: str,
        status: str,
        kind: Union[ActivityKind, str, None] = None,
    ) -> StatusChange:
        """PATCH a new status, then rebuild the view it came from and history.

        Both refreshes are forced: a batch issued before the PATCH may
        still be in flight and must not be joined.
        """
        status = status.upper()
        channel, activity = self.find(activity_id, kind, status)
        if status not in STATUSES_BY_KIND[activity.kind.value]:
            raise InvalidStatusTransitionError(
                f"{status} is not a valid status for {activity.kind.value}"
            )

        await self._client.update_status(activity.id, status, kind=activity.kind)
        logger.info("%s %s moved to %s", activity.kind.value, activity.id, status)
        view = self._views.get(channel) or self.current_view
        live, history = await self.refresh_all(view, force=True)
        return StatusChange(activity, status, view, live, history)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel debounce, ticker and every channel."""
        self._debouncer.cancel()
        if self._ticker is not None:
            await self._ticker.stop()
        await self._orchestrator.aclose()
