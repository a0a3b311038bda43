from typing import Dict, FrozenSet, Tuple

from crm_activity.schemas.common import (
    ActivityKind,
    MeetingStatus,
    ReminderStatus,
)

REMINDER_KINDS: FrozenSet[str] = frozenset(
    {ActivityKind.CALL.value, ActivityKind.EMAIL.value}
)

REMINDER_STATUSES: FrozenSet[str] = frozenset(s.value for s in ReminderStatus)
MEETING_STATUSES: FrozenSet[str] = frozenset(s.value for s in MeetingStatus)

# Status family per kind; a status outside its family is rejected
STATUSES_BY_KIND: Dict[str, FrozenSet[str]] = {
    ActivityKind.CALL.value: REMINDER_STATUSES,
    ActivityKind.EMAIL.value: REMINDER_STATUSES,
    ActivityKind.MEETING.value: MEETING_STATUSES,
}

# Meetings shown in live panels
LIVE_MEETING_STATUSES: Tuple[str, ...] = ("SCHEDULED", "RESCHEDULED")

HISTORY_WINDOWS: Tuple[int, ...] = (7, 14, 30, 90)

# Status filter shown when the history panel first opens
DEFAULT_HISTORY_STATUSES: FrozenSet[str] = frozenset({"DONE", "SENT", "FAILED"})

# Logical channels; each owns one in-flight batch at a time
CHANNEL_LIVE: str = "live"
CHANNEL_EMPLOYEE: str = "employee"
CHANNEL_ASSIGNED: str = "assigned"
CHANNEL_HISTORY: str = "history"
CHANNEL_HISTORY_EMPLOYEE: str = "history-employee"
CHANNEL_HISTORY_ASSIGNED: str = "history-assigned"

# Result pools inside a live channel snapshot
POOL_CALLS: str = "calls"
POOL_EMAILS: str = "emails"
POOL_MEETINGS: str = "meetings"
POOL_COMPLETED_MEETINGS: str = "completed_meetings"
POOL_HISTORY: str = "history"

POOL_BY_KIND: Dict[str, str] = {
    ActivityKind.CALL.value: POOL_CALLS,
    ActivityKind.EMAIL.value: POOL_EMAILS,
    ActivityKind.MEETING.value: POOL_MEETINGS,
}

# |now - t| below this is reported as "now"
NOW_THRESHOLD_SECONDS: int = 60
