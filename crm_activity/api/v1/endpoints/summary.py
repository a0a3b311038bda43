from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from crm_activity.api.deps import get_aggregator, get_summary_service
from crm_activity.core.config import settings
from crm_activity.core.rate_limit import limiter
from crm_activity.schemas.panels import OverviewTotals
from crm_activity.services.aggregator import ActivityAggregator
from crm_activity.services.summary_service import SummaryService

router = APIRouter(prefix="/summary", tags=["Summary"])


@router.get("/overview", response_model=OverviewTotals)
@limiter.limit(settings.RATE_LIMIT)
async def get_overview_totals(
    request: Request,
    aggregator: ActivityAggregator = Depends(get_aggregator),
    service: SummaryService = Depends(get_summary_service),
) -> OverviewTotals:
    """Counters per bucket (total, today, tomorrow, week, month)."""
    data = await service.overview_totals(aggregator.user)
    return OverviewTotals(**data)


@router.get("/employee", response_model=OverviewTotals)
@limiter.limit(settings.RATE_LIMIT)
async def get_employee_totals(
    request: Request,
    selected_user_id: Optional[str] = Query(None, description="Omit for everyone"),
    aggregator: ActivityAggregator = Depends(get_aggregator),
    service: SummaryService = Depends(get_summary_service),
) -> OverviewTotals:
    """Counters for one employee (or everyone); owners and admins only."""
    data = await service.employee_totals(aggregator.user, selected_user_id)
    return OverviewTotals(**data)
