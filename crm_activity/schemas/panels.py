"""Response schemas for the panels, history and summary endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from crm_activity.schemas.common import (
    ActivityKind,
    PanelMode,
    ScopeName,
    SuccessResponse,
    TimeState,
    ViewMode,
)
from crm_activity.schemas.filters import ViewState
from crm_activity.services.history import HistoryPage
from crm_activity.services.orchestrator import BatchStatus, ChannelSnapshot
from crm_activity.services.relative_time import AnnotatedActivity


# ---------------------------------------------------------------------------
# Activity rows
# ---------------------------------------------------------------------------


class ActivityOut(BaseModel):
    """One activity with its relative-time description at render time."""

    id: str
    kind: ActivityKind
    when: str
    status: str
    title: Optional[str] = None
    assignee: Optional[str] = None
    assigned_to_user_id: Optional[str] = None
    created_by: Optional[str] = None
    client_name: Optional[str] = None
    opportunity_id: Optional[str] = None
    state: TimeState
    days: int
    hours: int
    minutes: int
    label: str

    @classmethod
    def from_annotated(cls, row: AnnotatedActivity) -> "ActivityOut":
        activity = row.activity
        magnitude = row.relative.magnitude
        return cls(
            id=activity.id,
            kind=activity.kind,
            when=activity.when.isoformat(),
            status=activity.status,
            title=activity.title,
            assignee=activity.assignee,
            assigned_to_user_id=activity.assigned_to_user_id,
            created_by=activity.created_by,
            client_name=activity.client_name,
            opportunity_id=activity.opportunity_id,
            state=row.relative.state,
            days=magnitude.days,
            hours=magnitude.hours,
            minutes=magnitude.minutes,
            label=row.label,
        )


class ChannelStatus(BaseModel):
    """Loading/error flags of one query channel."""

    channel: str
    generation: int
    loading: bool
    error: Optional[str] = None
    committed_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: ChannelSnapshot) -> "ChannelStatus":
        return cls(
            channel=snapshot.name,
            generation=snapshot.generation,
            loading=snapshot.loading,
            error=snapshot.error,
            committed_at=snapshot.committed_at,
        )


# ---------------------------------------------------------------------------
# Panels
# ---------------------------------------------------------------------------


class PanelOut(BaseModel):
    scope: ScopeName
    calls: List[ActivityOut] = Field(default_factory=list)
    emails: List[ActivityOut] = Field(default_factory=list)
    meetings: List[ActivityOut] = Field(default_factory=list)
    completed_meetings: List[ActivityOut] = Field(default_factory=list)


class PanelsResponse(BaseModel):
    view_mode: ViewMode
    panel_mode: PanelMode
    selected_user_id: Optional[str] = None
    batch: BatchStatus
    status: ChannelStatus
    skipped_reason: Optional[str] = None
    panels: List[PanelOut]


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


class HistoryPageOut(BaseModel):
    view_mode: ViewMode
    selected_user_id: Optional[str] = None
    days: int
    kinds: List[str]
    statuses: List[str]
    page: int
    page_size: int
    total: int
    total_pages: int
    status: ChannelStatus
    items: List[ActivityOut]

    @classmethod
    def build(
        cls,
        page: HistoryPage,
        rows: List[AnnotatedActivity],
        *,
        view: ViewState,
        days: int,
        kinds: List[str],
        statuses: List[str],
        status: ChannelStatus,
    ) -> "HistoryPageOut":
        return cls(
            view_mode=view.view_mode,
            selected_user_id=view.selected_user_id,
            days=days,
            kinds=sorted(kinds),
            statuses=sorted(statuses),
            page=page.page,
            page_size=page.page_size,
            total=page.total,
            total_pages=page.total_pages,
            status=status,
            items=[ActivityOut.from_annotated(row) for row in rows],
        )


# ---------------------------------------------------------------------------
# Mutations and totals
# ---------------------------------------------------------------------------


class StatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    kind: Optional[ActivityKind] = Field(
        None, description="Needed when a call and a meeting share the id"
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _upper_kind(cls, value):
        return value.upper() if isinstance(value, str) else value


class StatusUpdateResponse(SuccessResponse):
    id: str
    kind: ActivityKind
    status: str
    live: ChannelStatus
    history: ChannelStatus


class CounterSet(BaseModel):
    overdue: int = 0
    pending: int = 0
    done: int = 0
    sent: int = 0
    failed: int = 0


class OverviewTotals(BaseModel):
    total: CounterSet = Field(default_factory=CounterSet)
    today: CounterSet = Field(default_factory=CounterSet)
    tomorrow: CounterSet = Field(default_factory=CounterSet)
    week: CounterSet = Field(default_factory=CounterSet)
    month: CounterSet = Field(default_factory=CounterSet)
    generatedAt: Optional[str] = None

