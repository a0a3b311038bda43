"""Pydantic schemas package – re-exports for convenience."""

# Common enums
from crm_activity.schemas.common import (
    ActivityKind as ActivityKind,
    ReminderStatus as ReminderStatus,
    MeetingStatus as MeetingStatus,
    Role as Role,
    ViewMode as ViewMode,
    PanelMode as PanelMode,
    ScopeName as ScopeName,
    TimeState as TimeState,
    SuccessResponse as SuccessResponse,
)

# Activity schemas
from crm_activity.schemas.activity import (
    Activity as Activity,
    ActivityPage as ActivityPage,
)

# Filter / context schemas
from crm_activity.schemas.filters import (
    UserContext as UserContext,
    QueryContext as QueryContext,
    QueryFilters as QueryFilters,
    ViewState as ViewState,
    DoNotFetch as DoNotFetch,
    ScopeInterval as ScopeInterval,
)
