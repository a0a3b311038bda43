import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Awaitable, Callable, Iterable, List, Optional, Union

from crm_activity.core.constants import NOW_THRESHOLD_SECONDS
from crm_activity.core.timestamps import Timestamp
from crm_activity.schemas.activity import Activity
from crm_activity.schemas.common import TimeState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Magnitude:
    days: int
    hours: int
    minutes: int


@dataclass(frozen=True)
class RelativeTime:
    state: TimeState
    magnitude: Magnitude


@dataclass(frozen=True)
class AnnotatedActivity:
    activity: Activity
    relative: RelativeTime
    label: str


def _as_local(value: Union[datetime, Timestamp], tz: Optional[tzinfo]) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(tz).replace(tzinfo=None)
        return value
    return value.to_local(tz)


def describe(
    timestamp: Union[datetime, Timestamp],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> RelativeTime:
    """Classify *timestamp* against *now* and break the gap into d/h/m.

    ``now`` is reported when the two are less than a minute apart; the
    magnitude is the absolute difference, floored to whole minutes.
    """
    moment = _as_local(timestamp, tz)
    delta_seconds = (moment - _as_local(now, tz)).total_seconds()

    total_minutes = int(abs(delta_seconds) // 60)
    days, rem = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rem, 60)
    magnitude = Magnitude(days=days, hours=hours, minutes=minutes)

    if abs(delta_seconds) < NOW_THRESHOLD_SECONDS:
        state = TimeState.now
    elif delta_seconds < 0:
        state = TimeState.past
    else:
        state = TimeState.future
    return RelativeTime(state=state, magnitude=magnitude)


def format_magnitude(magnitude: Magnitude) -> str:
    """``1d 2h 14m`` with leading zero units dropped; never empty."""
    parts = []
    if magnitude.days:
        parts.append(f"{magnitude.days}d")
    if magnitude.days or magnitude.hours:
        parts.append(f"{magnitude.hours}h")
    parts.append(f"{magnitude.minutes}m")
    return " ".join(parts)


def label(relative: RelativeTime) -> str:
    if relative.state == TimeState.now:
        return "Now"
    text = format_magnitude(relative.magnitude)
    if relative.state == TimeState.future:
        return f"Starts in {text}"
    return f"Started {text} ago"


def annotate(
    items: Iterable[Activity],
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> List[AnnotatedActivity]:
    """Attach a fresh relative-time description to each item. No I/O."""
    annotated = []
    for item in items:
        relative = describe(item.when, now, tz)
        annotated.append(AnnotatedActivity(item, relative, label(relative)))
    return annotated


class RelativeTimeTicker:
    """Re-runs a pure callback on a fixed period.

    The callback recomputes labels over whatever is already committed;
    it must not perform network I/O. Failures are logged and the loop
    keeps ticking.
    """

    def __init__(
        self,
        on_tick: Callable[[datetime], Union[None, Awaitable[None]]],
        interval: float,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._on_tick = on_tick
        self._interval = interval
        self._clock = clock
        self._task: Optional["asyncio.Task[None]"] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def _loop(self) -> None:
        logger.debug("Relative-time ticker started (interval=%ss)", self._interval)
        while True:
            await asyncio.sleep(self._interval)
            self.ticks += 1
            try:
                result = self._on_tick(self._clock())
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.error("Relative-time tick failed", exc_info=True)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            logger.debug("Relative-time ticker stopped")
        self._task = None
