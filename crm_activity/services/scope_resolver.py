"""Map named scopes to closed local-time intervals.

Every function takes ``now`` explicitly so results are reproducible;
nothing here reads the clock.
"""

import calendar
from datetime import datetime, time, timedelta
from typing import Tuple, Union

from crm_activity.core.constants import HISTORY_WINDOWS
from crm_activity.core.exceptions import InvalidScopeError
from crm_activity.schemas.common import PanelMode, ScopeName
from crm_activity.schemas.filters import ScopeInterval

_DEFAULT_OVERDUE_LOOKBACK_DAYS = 180


def start_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min)


def end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max)


def start_of_week(moment: datetime) -> datetime:
    """Monday 00:00 of the ISO week containing *moment*."""
    return start_of_day(moment - timedelta(days=moment.weekday()))


def end_of_week(moment: datetime) -> datetime:
    return end_of_day(start_of_week(moment) + timedelta(days=6))


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment.replace(day=1))


def end_of_month(moment: datetime) -> datetime:
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return end_of_day(moment.replace(day=last_day))


def resolve(
    scope_name: Union[ScopeName, str],
    now: datetime,
    *,
    overdue_lookback_days: int = _DEFAULT_OVERDUE_LOOKBACK_DAYS,
) -> ScopeInterval:
    """Return the interval for *scope_name* relative to *now*.

    ``now`` must be a naive local datetime. Unknown names raise
    ``InvalidScopeError``.
    """
    if now.tzinfo is not None:
        raise InvalidScopeError("now must be a naive local datetime")
    try:
        scope = ScopeName(scope_name)
    except ValueError:
        raise InvalidScopeError(f"Unknown scope: {scope_name}")

    if scope == ScopeName.today:
        return ScopeInterval(from_=start_of_day(now), to=end_of_day(now))
    if scope == ScopeName.tomorrow:
        nxt = now + timedelta(days=1)
        return ScopeInterval(from_=start_of_day(nxt), to=end_of_day(nxt))
    if scope == ScopeName.week:
        return ScopeInterval(from_=start_of_week(now), to=end_of_week(now))
    if scope == ScopeName.month:
        return ScopeInterval(from_=start_of_month(now), to=end_of_month(now))

    # overdue: everything before today within the lookback window
    return ScopeInterval(
        from_=start_of_day(now - timedelta(days=overdue_lookback_days)),
        to=end_of_day(now - timedelta(days=1)),
    )


def panel_scopes(panel_mode: Union[PanelMode, str]) -> Tuple[ScopeName, ScopeName]:
    """Return the (left, right) scopes shown side by side for a panel mode."""
    if PanelMode(panel_mode) == PanelMode.day:
        return ScopeName.today, ScopeName.tomorrow
    return ScopeName.week, ScopeName.month


def rolling_window(days: int, now: datetime) -> ScopeInterval:
    """Return ``[startOfDay(now - days), endOfDay(now)]`` for history."""
    if days not in HISTORY_WINDOWS:
        raise InvalidScopeError(
            f"History window must be one of {', '.join(map(str, HISTORY_WINDOWS))}"
        )
    return ScopeInterval(
        from_=start_of_day(now - timedelta(days=days)),
        to=end_of_day(now),
    )
