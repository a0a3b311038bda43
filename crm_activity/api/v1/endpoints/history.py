from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from crm_activity.api.deps import get_aggregator
from crm_activity.core.config import settings
from crm_activity.core.rate_limit import limiter
from crm_activity.schemas.common import ViewMode
from crm_activity.schemas.filters import ViewState
from crm_activity.schemas.panels import ChannelStatus, HistoryPageOut
from crm_activity.services.aggregator import ActivityAggregator

router = APIRouter(prefix="/history", tags=["History"])


@router.get("", response_model=HistoryPageOut)
@limiter.limit(settings.RATE_LIMIT)
async def get_history(
    request: Request,
    days: Optional[int] = Query(None, description="Window size: 7, 14, 30 or 90"),
    kinds: Optional[List[str]] = Query(None),
    statuses: Optional[List[str]] = Query(None),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    view_mode: ViewMode = Query(ViewMode.overview),
    selected_user_id: Optional[str] = Query(None),
    aggregator: ActivityAggregator = Depends(get_aggregator),
) -> HistoryPageOut:
    """Return one page of the rolling history window.

    Only the window size and the owning view reach the activity service;
    kind and status filters and paging are applied to the committed
    window.
    """
    view = ViewState(view_mode=view_mode, selected_user_id=selected_user_id)
    await aggregator.load_history(days, view=view)

    history = aggregator.history_for(view)
    if kinds is not None:
        history.set_kinds(kinds)
    if statuses is not None:
        history.set_statuses(statuses)
    if page_size is not None and page_size != history.page_size:
        history.set_page_size(page_size)
    history.set_page(page)

    current, rows = aggregator.history_page(view=view)
    return HistoryPageOut.build(
        current,
        rows,
        view=view,
        days=history.days,
        kinds=list(history.kinds),
        statuses=list(history.statuses),
        status=ChannelStatus.from_snapshot(
            aggregator.orchestrator.snapshot(history.channel)
        ),
    )
