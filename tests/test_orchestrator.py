import asyncio
from datetime import datetime

import httpx
import pytest

from crm_activity.schemas.common import ActivityKind
from crm_activity.schemas.filters import DoNotFetch, QueryFilters, ScopeInterval
from crm_activity.services.orchestrator import (
    BatchStatus,
    FetchRequest,
    RequestOrchestrator,
)

from conftest import FIXED_NOW, raw_item, until

TODAY = ScopeInterval(
    from_=datetime(2025, 10, 15), to=datetime(2025, 10, 15, 23, 59, 59)
)


def _batch(owner: str, kinds=(ActivityKind.CALL, ActivityKind.EMAIL)):
    filters = QueryFilters(scope_owner_id=owner)
    return [FetchRequest(kind.value.lower() + "s", kind, TODAY, filters) for kind in kinds]


def _by_owner(params: httpx.QueryParams):
    owner = params.get("userId")
    return [raw_item(f"{owner}-{params['kind']}", kind=params["kind"])]


@pytest.fixture
def orchestrator(fetch_client):
    return RequestOrchestrator(fetch_client, clock=lambda: FIXED_NOW)


class TestCommit:
    @pytest.mark.asyncio
    async def test_successful_batch_commits_every_pool(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        outcome = await orchestrator.run("live", _batch("a"))

        assert outcome.status == BatchStatus.committed
        assert outcome.request_count == 2
        snapshot = orchestrator.snapshot("live")
        assert [a.id for a in snapshot.pool("calls")] == ["a-CALL"]
        assert [a.id for a in snapshot.pool("emails")] == ["a-EMAIL"]
        assert snapshot.loading is False
        assert snapshot.error is None
        assert snapshot.committed_at == FIXED_NOW

    @pytest.mark.asyncio
    async def test_requests_sharing_a_pool_are_merged_by_id(self, fake_api, orchestrator):
        fake_api.items["CALL"] = [raw_item("1"), raw_item("2")]
        filters_a = QueryFilters(scope_owner_id="me")
        filters_b = QueryFilters(created_by_user_id="me")
        requests = [
            FetchRequest("calls", ActivityKind.CALL, TODAY, filters_a),
            FetchRequest("calls", ActivityKind.CALL, TODAY, filters_b),
        ]
        await orchestrator.run("live", requests)
        assert sorted(a.id for a in orchestrator.snapshot("live").pool("calls")) == ["1", "2"]


class TestLatestRequestWins:
    @pytest.mark.asyncio
    async def test_out_of_order_completion_keeps_newest(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        gate_a = fake_api.gates["a"] = asyncio.Event()
        gate_b = fake_api.gates["b"] = asyncio.Event()

        first = asyncio.create_task(orchestrator.run("live", _batch("a")))
        await until(lambda: len(fake_api.activity_requests()) == 2)
        second = asyncio.create_task(orchestrator.run("live", _batch("b")))
        await until(lambda: len(fake_api.activity_requests()) == 4)

        gate_b.set()
        outcome_b = await second
        gate_a.set()
        outcome_a = await first

        assert outcome_b.status == BatchStatus.committed
        assert outcome_a.status == BatchStatus.superseded
        snapshot = orchestrator.snapshot("live")
        assert [a.id for a in snapshot.pool("calls")] == ["b-CALL"]
        assert snapshot.committed_generation == outcome_b.generation
        assert snapshot.loading is False

    @pytest.mark.asyncio
    async def test_superseded_failure_is_silent(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        fake_api.gates["a"] = asyncio.Event()

        first = asyncio.create_task(orchestrator.run("live", _batch("a")))
        await until(lambda: len(fake_api.activity_requests()) == 2)
        await orchestrator.run("live", _batch("b"))

        fake_api.fail_status = 500
        fake_api.gates["a"].set()
        outcome_a = await first

        assert outcome_a.status == BatchStatus.superseded
        assert orchestrator.snapshot("live").error is None

    @pytest.mark.asyncio
    async def test_channels_are_independent(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        fake_api.gates["h"] = asyncio.Event()

        history = asyncio.create_task(orchestrator.run("history", _batch("h")))
        await until(lambda: len(fake_api.activity_requests()) == 2)
        await orchestrator.run("live", _batch("a"))
        fake_api.gates["h"].set()

        assert (await history).status == BatchStatus.committed
        assert orchestrator.snapshot("live").pool("calls")[0].id == "a-CALL"
        assert orchestrator.snapshot("history").pool("calls")[0].id == "h-CALL"


class TestDoNotFetch:
    @pytest.mark.asyncio
    async def test_issues_zero_requests(self, fake_api, orchestrator):
        outcome = await orchestrator.run("employee", DoNotFetch(reason="Select an employee"))

        assert outcome.status == BatchStatus.skipped
        assert outcome.reason == "Select an employee"
        assert fake_api.activity_requests() == []
        snapshot = orchestrator.snapshot("employee")
        assert snapshot.loading is False
        assert snapshot.error is None
        assert orchestrator.batches_issued == 0

    @pytest.mark.asyncio
    async def test_supersedes_in_flight_batch(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        fake_api.gates["a"] = asyncio.Event()

        pending = asyncio.create_task(orchestrator.run("employee", _batch("a")))
        await until(lambda: len(fake_api.activity_requests()) == 2)
        await orchestrator.run("employee", DoNotFetch(reason="cleared"))
        fake_api.gates["a"].set()

        assert (await pending).status == BatchStatus.superseded
        assert orchestrator.snapshot("employee").pool("calls") == ()


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_keeps_committed_data(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        await orchestrator.run("live", _batch("a"))

        fake_api.fail_status = 503
        fake_api.fail_message = "Maintenance window"
        outcome = await orchestrator.run("live", _batch("b"))

        assert outcome.status == BatchStatus.failed
        assert outcome.error == "Maintenance window"
        snapshot = orchestrator.snapshot("live")
        assert snapshot.error == "Maintenance window"
        assert snapshot.loading is False
        assert [a.id for a in snapshot.pool("calls")] == ["a-CALL"]

    @pytest.mark.asyncio
    async def test_next_batch_clears_error(self, fake_api, orchestrator):
        fake_api.fail_exc = httpx.ConnectError("down")
        await orchestrator.run("live", _batch("a"))
        assert orchestrator.snapshot("live").error == "Activity service unavailable"

        fake_api.fail_exc = None
        fake_api.responder = _by_owner
        await orchestrator.run("live", _batch("a"))
        assert orchestrator.snapshot("live").error is None


class TestJoinAndCancel:
    @pytest.mark.asyncio
    async def test_same_params_join_in_flight_batch(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        fake_api.gates["a"] = asyncio.Event()
        key = ("live", "a")

        first = asyncio.create_task(orchestrator.run("live", _batch("a"), params_key=key))
        await until(lambda: len(fake_api.activity_requests()) == 2)
        second = asyncio.create_task(orchestrator.run("live", _batch("a"), params_key=key))
        await asyncio.sleep(0)
        fake_api.gates["a"].set()

        outcome_1, outcome_2 = await asyncio.gather(first, second)
        assert outcome_1 == outcome_2
        assert orchestrator.batches_issued == 1
        assert len(fake_api.activity_requests()) == 2

    @pytest.mark.asyncio
    async def test_forced_run_supersedes_identical_batch(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        fake_api.gates["a"] = asyncio.Event()
        key = ("live", "a")

        stale = asyncio.create_task(orchestrator.run("live", _batch("a"), params_key=key))
        await until(lambda: len(fake_api.activity_requests()) == 2)
        fresh = asyncio.create_task(
            orchestrator.run("live", _batch("a"), params_key=key, force=True)
        )
        await until(lambda: len(fake_api.activity_requests()) == 4)
        fake_api.gates["a"].set()

        stale_outcome, fresh_outcome = await asyncio.gather(stale, fresh)
        assert stale_outcome.status == BatchStatus.superseded
        assert fresh_outcome.status == BatchStatus.committed
        assert fresh_outcome.generation == stale_outcome.generation + 1
        assert orchestrator.batches_issued == 2

    @pytest.mark.asyncio
    async def test_cancel_clears_loading_and_keeps_data(self, fake_api, orchestrator):
        fake_api.responder = _by_owner
        await orchestrator.run("live", _batch("a"))
        fake_api.gates["b"] = asyncio.Event()

        pending = asyncio.create_task(orchestrator.run("live", _batch("b")))
        await until(lambda: orchestrator.is_in_flight("live"))
        assert orchestrator.snapshot("live").loading is True

        orchestrator.cancel("live")
        outcome = await pending

        assert outcome.status == BatchStatus.superseded
        snapshot = orchestrator.snapshot("live")
        assert snapshot.loading is False
        assert [a.id for a in snapshot.pool("calls")] == ["a-CALL"]

    @pytest.mark.asyncio
    async def test_aclose_winds_down_every_channel(self, fake_api, orchestrator):
        fake_api.gates["a"] = asyncio.Event()
        pending = asyncio.create_task(orchestrator.run("live", _batch("a")))
        await until(lambda: len(fake_api.activity_requests()) == 2)

        await orchestrator.aclose()

        assert (await pending).status == BatchStatus.superseded
        assert not orchestrator.is_in_flight("live")
