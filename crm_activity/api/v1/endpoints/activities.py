from fastapi import APIRouter, Depends, Request

from crm_activity.api.deps import get_aggregator, get_summary_service
from crm_activity.core.rate_limit import limiter
from crm_activity.schemas.panels import (
    ChannelStatus,
    StatusUpdate,
    StatusUpdateResponse,
)
from crm_activity.services.aggregator import ActivityAggregator
from crm_activity.services.summary_service import SummaryService

router = APIRouter(prefix="/activities", tags=["Activities"])


@router.patch("/{activity_id}/status", response_model=StatusUpdateResponse)
@limiter.limit("30/minute")
async def update_activity_status(
    request: Request,
    activity_id: str,
    body: StatusUpdate,
    aggregator: ActivityAggregator = Depends(get_aggregator),
    summary: SummaryService = Depends(get_summary_service),
) -> StatusUpdateResponse:
    """Move an activity to a new status and rebuild the affected views.

    The activity must be present in one of the caller's loaded views;
    the new status has to belong to its kind. When a call or e-mail and
    a meeting share the id, ``kind`` picks one.
    """
    change = await aggregator.transition(activity_id, body.status, body.kind)
    await summary.invalidate(aggregator.user)

    history_channel = aggregator.history_for(change.view).channel
    return StatusUpdateResponse(
        id=change.activity.id,
        kind=change.activity.kind,
        status=change.status,
        live=ChannelStatus.from_snapshot(
            aggregator.orchestrator.snapshot(change.live.channel)
        ),
        history=ChannelStatus.from_snapshot(
            aggregator.orchestrator.snapshot(history_channel)
        ),
    )
