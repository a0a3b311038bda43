from enum import Enum
from pydantic import BaseModel


class ActivityKind(str, Enum):
    CALL = "CALL"
    EMAIL = "EMAIL"
    MEETING = "MEETING"


class ReminderStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    DONE = "DONE"
    FAILED = "FAILED"


class MeetingStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    RESCHEDULED = "RESCHEDULED"


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"


class ViewMode(str, Enum):
    overview = "overview"
    employee = "employee"
    assigned_to = "assigned-to"


class PanelMode(str, Enum):
    day = "day"
    range = "range"


class ScopeName(str, Enum):
    today = "today"
    tomorrow = "tomorrow"
    week = "week"
    month = "month"
    overdue = "overdue"


class TimeState(str, Enum):
    past = "past"
    now = "now"
    future = "future"


class SuccessResponse(BaseModel):
    """Generic success response base."""

    success: bool = True
