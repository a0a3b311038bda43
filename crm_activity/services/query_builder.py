import logging
from typing import List, Optional, Union

from crm_activity.core.exceptions import InvalidFilterState
from crm_activity.schemas.common import ViewMode
from crm_activity.schemas.filters import DoNotFetch, QueryContext, QueryFilters

logger = logging.getLogger(__name__)


def _require_selection(ctx: QueryContext, message: str) -> str:
    target = (ctx.selected_user_id or "").strip()
    if not target:
        raise InvalidFilterState(message)
    return target


def _derive(ctx: QueryContext, search: Optional[str]) -> QueryFilters:
    if ctx.view_mode == ViewMode.overview:
        if ctx.is_privileged:
            return QueryFilters(scope_owner_id=ctx.self_id, search=search)
        return QueryFilters(assigned_to_user_id=ctx.self_id, search=search)

    if ctx.view_mode == ViewMode.employee:
        if not ctx.is_privileged:
            raise InvalidFilterState("Employee overview is limited to owners and admins")
        target = _require_selection(ctx, "Select an employee to load their activities")
        return QueryFilters(scope_owner_id=target, search=search)

    # assigned-to
    target = _require_selection(ctx, "Select an assignee to load activities")
    return QueryFilters(
        created_by_user_id=ctx.self_id,
        assigned_to_user_id=target,
        search=search,
    )


def build_filters(ctx: QueryContext) -> Union[QueryFilters, DoNotFetch]:
    """Derive the primary filter set for the active view.

    * ``overview`` – employees see what is assigned to them; owners and
      admins see everything they own.
    * ``employee`` – owners/admins look at one selected user's scope.
    * ``assigned-to`` – items the caller created *and* assigned to the
      selected user.

    An incomplete filter state is not an error: it becomes ``DoNotFetch``
    carrying the reason, and the channel simply stays idle.
    """
    search = (ctx.search or "").strip() or None
    try:
        return _derive(ctx, search)
    except InvalidFilterState as exc:
        return DoNotFetch(reason=exc.detail)


def build_filter_sets(ctx: QueryContext) -> Union[List[QueryFilters], DoNotFetch]:
    """Return every filter set the view fans out over.

    Owners and admins on their own overview also see the items they
    created for others; the two pools overlap and are merged by id.
    """
    primary = build_filters(ctx)
    if isinstance(primary, DoNotFetch):
        logger.debug("Skipping fetch for %s: %s", ctx.view_mode.value, primary.reason)
        return primary

    sets = [primary]
    if ctx.view_mode == ViewMode.overview and ctx.is_privileged:
        sets.append(
            QueryFilters(created_by_user_id=ctx.self_id, search=primary.search)
        )
    return sets
