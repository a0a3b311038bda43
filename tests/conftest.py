import asyncio
from datetime import datetime
from typing import TYPE_CHECKING, AsyncGenerator, Callable, Dict, List, Optional
from unittest.mock import AsyncMock

if TYPE_CHECKING:
    from crm_activity.core.cache import CacheService

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from crm_activity.main import app
from crm_activity.schemas.activity import Activity
from crm_activity.schemas.filters import UserContext
from crm_activity.services.fetch_client import ActivityFetchClient
from crm_activity.services.sessions import SessionRegistry, default_client_factory

# Wednesday; the ISO week runs Mon 13th .. Sun 19th
FIXED_NOW = datetime(2025, 10, 15, 10, 0, 0)

API_BASE = "http://crm.test/api"


def make_activity(
    activity_id="1",
    *,
    kind: str = "CALL",
    when: str = "2025-10-15 12:00:00",
    status: Optional[str] = None,
    **extra,
) -> Activity:
    """Build an ``Activity`` the way the fetch client would."""
    if status is None:
        status = "SCHEDULED" if kind == "MEETING" else "PENDING"
    payload = {"id": activity_id, "kind": kind, "when": when, "status": status}
    payload.update(extra)
    return Activity.model_validate(payload)


def raw_item(activity_id, kind="CALL", when="2025-10-15 12:00:00", status=None, **extra):
    """Wire-format item as the activity API returns it."""
    if status is None:
        status = "SCHEDULED" if kind == "MEETING" else "PENDING"
    item = {"id": activity_id, "type": kind, "due_ts": when, "status": status}
    item.update(extra)
    return item


async def until(predicate, attempts: int = 200) -> None:
    """Yield to the loop until *predicate* holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class FakeActivityApi:
    """In-memory activity API served through ``httpx.MockTransport``.

    * ``items`` maps a kind to the rows returned for it; a ``status``
      query parameter filters them server-side.
    * ``responder`` overrides ``items`` with a function of the query.
    * ``gates`` holds an ``asyncio.Event`` per owner id; requests for
      that owner wait until the event is set.
    * ``fail_status`` / ``fail_exc`` make every activity fetch fail.
    * ``/auth/me`` rejects calls without a bearer token unless
      ``allow_anonymous`` is set.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.items: Dict[str, List[dict]] = {}
        self.responder: Optional[Callable[[httpx.QueryParams], List[dict]]] = None
        self.gates: Dict[str, asyncio.Event] = {}
        self.fail_status: Optional[int] = None
        self.fail_message = "Something broke upstream"
        self.fail_exc: Optional[Exception] = None
        self.user: Optional[dict] = {"id": "u-1", "role": "OWNER", "username": "owner"}
        self.summary_extended: Optional[dict] = None
        self.summary_legacy: dict = {"buckets": {}}
        self.summary_status: Optional[int] = None
        self.summary_employee: dict = {}
        self.allow_anonymous = False

    @staticmethod
    def _owner(params: httpx.QueryParams) -> str:
        return params.get("userId") or params.get("assignedToUserId") or ""

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/auth/me"):
            if "Authorization" not in request.headers and not self.allow_anonymous:
                return httpx.Response(401, json={"message": "Authentication required"})
            if self.user is None:
                return httpx.Response(401, json={"message": "Invalid token"})
            return httpx.Response(200, json=self.user)

        if "/activities/summary/" in path and self.summary_status is not None:
            return httpx.Response(self.summary_status, json={"message": self.fail_message})

        if path.endswith("/activities/summary/overview-extended"):
            if self.summary_extended is None:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, json=self.summary_extended)

        if path.endswith("/activities/summary/overview"):
            return httpx.Response(200, json=self.summary_legacy)

        if path.endswith("/activities/summary/employee-extended"):
            return httpx.Response(200, json=self.summary_employee)

        if request.method == "PATCH":
            return httpx.Response(200, json={"ok": True})

        params = request.url.params
        gate = self.gates.get(self._owner(params))
        if gate is not None:
            await gate.wait()
        if self.fail_exc is not None:
            raise self.fail_exc
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": self.fail_message})

        if self.responder is not None:
            rows = self.responder(params)
        else:
            rows = list(self.items.get(params.get("kind", ""), []))
        wanted = params.get("status")
        if wanted:
            allowed = set(wanted.split(","))
            rows = [r for r in rows if r.get("status") in allowed]
        return httpx.Response(200, json={"items": rows})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def activity_requests(self) -> List[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.method == "GET" and r.url.path.endswith("/activities")
        ]

    def patches(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "PATCH"]


@pytest.fixture
def fake_api() -> FakeActivityApi:
    return FakeActivityApi()


@pytest_asyncio.fixture
async def fetch_client(fake_api) -> AsyncGenerator[ActivityFetchClient, None]:
    """A real ``ActivityFetchClient`` talking to the fake API."""
    client = ActivityFetchClient(
        base_url=API_BASE, bearer_token="test-token", transport=fake_api.transport()
    )
    yield client
    await client.aclose()


@pytest.fixture
def owner() -> UserContext:
    return UserContext(id="u-1", role="OWNER", username="owner")


@pytest.fixture
def employee() -> UserContext:
    return UserContext(id="u-2", role="EMPLOYEE", username="employee")


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest_asyncio.fixture
async def async_client(fake_api) -> AsyncGenerator[AsyncClient, None]:
    """Yield an ``httpx.AsyncClient`` wired to the FastAPI app.

    Sessions created during the test talk to ``fake_api``.
    """
    registry = SessionRegistry(client_factory=default_client_factory(fake_api.transport()))
    app.state.sessions = registry
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await registry.close_all()
    app.state.sessions = None


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Return an ``AsyncMock`` that behaves like ``redis.asyncio.Redis``."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.setex = AsyncMock()
    redis.delete = AsyncMock()
    redis.ping = AsyncMock()
    return redis


@pytest.fixture
def mock_cache(mock_redis) -> "CacheService":
    """Return a ``CacheService`` backed by the mock Redis client."""
    from crm_activity.core.cache import CacheService

    return CacheService(redis_client=mock_redis)
