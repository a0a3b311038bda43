from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from crm_activity.api.deps import get_aggregator
from crm_activity.core.config import settings
from crm_activity.core.constants import (
    POOL_CALLS,
    POOL_COMPLETED_MEETINGS,
    POOL_EMAILS,
    POOL_MEETINGS,
)
from crm_activity.core.rate_limit import limiter
from crm_activity.schemas.common import PanelMode, ScopeName, ViewMode
from crm_activity.schemas.filters import ViewState
from crm_activity.schemas.panels import (
    ActivityOut,
    ChannelStatus,
    PanelOut,
    PanelsResponse,
)
from crm_activity.services.aggregator import ActivityAggregator
from crm_activity.services.orchestrator import BatchStatus
from crm_activity.services.scope_resolver import panel_scopes

router = APIRouter(prefix="/panels", tags=["Panels"])


def _rows(
    aggregator: ActivityAggregator,
    view: ViewState,
    scope: ScopeName,
    pool: str,
    now: datetime,
) -> List[ActivityOut]:
    return [
        ActivityOut.from_annotated(row)
        for row in aggregator.panel(scope, pool, now, view=view)
    ]


@router.get("/{view_mode}", response_model=PanelsResponse)
@limiter.limit(settings.RATE_LIMIT)
async def get_panels(
    request: Request,
    view_mode: ViewMode,
    panel_mode: PanelMode = Query(PanelMode.day),
    selected_user_id: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="Free-text search forwarded upstream"),
    aggregator: ActivityAggregator = Depends(get_aggregator),
) -> PanelsResponse:
    """Load the two panels of *view_mode* and label every row.

    A view that still needs a selected user answers with empty panels
    and the reason, without calling the activity service. A request
    overtaken by a newer one on the same view reports ``superseded``
    and renders what the newer batch committed.
    """
    view = ViewState(
        view_mode=view_mode,
        panel_mode=panel_mode,
        selected_user_id=selected_user_id,
        search=q,
    )
    outcome = await aggregator.refresh(view)

    now = aggregator.now()
    panels = []
    for scope in panel_scopes(view.panel_mode):
        panel = PanelOut(scope=scope)
        if outcome.status != BatchStatus.skipped:
            panel.calls = _rows(aggregator, view, scope, POOL_CALLS, now)
            panel.emails = _rows(aggregator, view, scope, POOL_EMAILS, now)
            panel.meetings = _rows(aggregator, view, scope, POOL_MEETINGS, now)
            if scope == ScopeName.today:
                panel.completed_meetings = _rows(
                    aggregator, view, scope, POOL_COMPLETED_MEETINGS, now
                )
        panels.append(panel)

    return PanelsResponse(
        view_mode=view.view_mode,
        panel_mode=view.panel_mode,
        selected_user_id=view.selected_user_id,
        batch=outcome.status,
        status=ChannelStatus.from_snapshot(aggregator.snapshot(view)),
        skipped_reason=outcome.reason,
        panels=panels,
    )
