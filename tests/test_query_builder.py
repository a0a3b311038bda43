import pytest

from crm_activity.schemas.common import Role, ViewMode
from crm_activity.schemas.filters import DoNotFetch, QueryContext, QueryFilters
from crm_activity.services.query_builder import build_filter_sets, build_filters


def _ctx(role=Role.OWNER, view_mode=ViewMode.overview, selected=None, search=None):
    return QueryContext(
        role=role,
        self_id="me",
        view_mode=view_mode,
        selected_user_id=selected,
        search=search,
    )


class TestOverview:
    @pytest.mark.parametrize("role", [Role.OWNER, Role.ADMIN])
    def test_privileged_sees_own_scope(self, role):
        filters = build_filters(_ctx(role=role))
        assert filters == QueryFilters(scope_owner_id="me")

    def test_employee_sees_assigned_items(self):
        filters = build_filters(_ctx(role=Role.EMPLOYEE))
        assert filters == QueryFilters(assigned_to_user_id="me")

    def test_search_is_trimmed_and_carried(self):
        filters = build_filters(_ctx(search="  acme  "))
        assert filters.search == "acme"

    def test_blank_search_is_dropped(self):
        assert build_filters(_ctx(search="   ")).search is None


class TestEmployeeView:
    def test_privileged_with_selection(self):
        filters = build_filters(_ctx(view_mode=ViewMode.employee, selected="emp-7"))
        assert filters == QueryFilters(scope_owner_id="emp-7")

    def test_non_privileged_never_fetches(self):
        result = build_filters(
            _ctx(role=Role.EMPLOYEE, view_mode=ViewMode.employee, selected="emp-7")
        )
        assert isinstance(result, DoNotFetch)
        assert "owners and admins" in result.reason

    @pytest.mark.parametrize("selected", [None, "", "   "])
    def test_missing_selection(self, selected):
        result = build_filters(_ctx(view_mode=ViewMode.employee, selected=selected))
        assert isinstance(result, DoNotFetch)


class TestAssignedToView:
    def test_intersects_creator_and_assignee(self):
        filters = build_filters(_ctx(view_mode=ViewMode.assigned_to, selected="emp-3"))
        assert filters == QueryFilters(
            created_by_user_id="me", assigned_to_user_id="emp-3"
        )

    def test_employee_role_may_use_it(self):
        filters = build_filters(
            _ctx(role=Role.EMPLOYEE, view_mode=ViewMode.assigned_to, selected="emp-3")
        )
        assert isinstance(filters, QueryFilters)

    def test_missing_selection(self):
        assert isinstance(
            build_filters(_ctx(view_mode=ViewMode.assigned_to)), DoNotFetch
        )


class TestFilterSets:
    def test_privileged_overview_adds_created_by_set(self):
        sets = build_filter_sets(_ctx(search="x"))
        assert sets == [
            QueryFilters(scope_owner_id="me", search="x"),
            QueryFilters(created_by_user_id="me", search="x"),
        ]

    def test_employee_overview_single_set(self):
        assert build_filter_sets(_ctx(role=Role.EMPLOYEE)) == [
            QueryFilters(assigned_to_user_id="me")
        ]

    def test_do_not_fetch_passes_through(self):
        assert isinstance(
            build_filter_sets(_ctx(view_mode=ViewMode.employee)), DoNotFetch
        )


class TestWireParams:
    def test_all_fields(self):
        params = QueryFilters(
            assigned_to_user_id="a",
            created_by_user_id="c",
            scope_owner_id="o",
            search="q",
        ).to_params()
        assert params == {"assignedToUserId": "a", "createdBy": "c", "userId": "o", "q": "q"}

    def test_empty_filters_send_nothing(self):
        assert QueryFilters().to_params() == {}
