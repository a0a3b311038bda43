import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from crm_activity.core.config import settings
from crm_activity.core.exceptions import (
    AuthenticationRequiredError,
    FetchCancelled,
    HttpFailure,
    NetworkFailure,
)
from crm_activity.core.timestamps import format_local
from crm_activity.schemas.activity import Activity, ActivityPage
from crm_activity.schemas.common import ActivityKind
from crm_activity.schemas.filters import QueryFilters, ScopeInterval, UserContext
from crm_activity.services.cancellation import CancellationToken

logger = logging.getLogger(__name__)


def _server_message(response: httpx.Response) -> Optional[str]:
    """Extract the human-readable error the API put in its body, if any."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] or None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


def _ensure_active(token: Optional[CancellationToken]) -> None:
    if token is not None and token.cancelled:
        raise FetchCancelled(f"{token!r} cancelled")


class ActivityFetchClient:
    """Thin, cancellable wrapper around the CRM activity API.

    One client is shared by every channel of a session. The bearer
    token is optional: without one, requests go out unauthenticated and
    whatever the API answers is surfaced as usual.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        bearer_token: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._bearer_token = bearer_token or None
        self._client = httpx.AsyncClient(
            base_url=base_url if base_url is not None else settings.ACTIVITY_API_BASE_URL,
            timeout=timeout if timeout is not None else settings.REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def __aenter__(self) -> "ActivityFetchClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    # ------------------------------------------------------------------
    # Low-level request helper
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        if not self._bearer_token:
            return {}
        return {"Authorization": f"Bearer {self._bearer_token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=self._headers()
            )
        except httpx.TimeoutException as exc:
            logger.debug("Activity service timed out: %s %s", method, path)
            raise NetworkFailure("Activity service timed out") from exc
        except httpx.HTTPError as exc:
            logger.debug("Activity service unreachable: %s %s: %s", method, path, exc)
            raise NetworkFailure("Activity service unavailable") from exc

        if not response.is_success:
            raise HttpFailure(response.status_code, _server_message(response))
        return response

    async def get_json(
        self, path: str, params: Optional[Dict[str, str]] = None
    ) -> Any:
        """GET *path* and decode its JSON body."""
        response = await self._request("GET", path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkFailure("Activity service returned invalid JSON") from exc

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------

    async def fetch(
        self,
        kind: ActivityKind,
        interval: ScopeInterval,
        filters: QueryFilters,
        token: Optional[CancellationToken] = None,
        *,
        statuses: Optional[Iterable[str]] = None,
    ) -> Optional[List[Activity]]:
        """Fetch one kind of activity inside *interval*.

        Returns ``None`` when *token* was cancelled before or during the
        request; that outcome is "ignored", never an error.
        """
        try:
            return await self._fetch(kind, interval, filters, token, statuses)
        except FetchCancelled as exc:
            logger.debug("Fetch %s ignored: %s", kind.value, exc.detail)
            return None

    async def _fetch(
        self,
        kind: ActivityKind,
        interval: ScopeInterval,
        filters: QueryFilters,
        token: Optional[CancellationToken],
        statuses: Optional[Iterable[str]],
    ) -> List[Activity]:
        _ensure_active(token)

        params: Dict[str, str] = {
            "kind": kind.value,
            "dateFrom": format_local(interval.from_),
            "dateTo": format_local(interval.to),
        }
        params.update(filters.to_params())
        status_list = [s for s in (statuses or ()) if s]
        if status_list:
            params["status"] = ",".join(status_list)
        if kind == ActivityKind.MEETING:
            params["sort"] = "starts_at_asc"

        try:
            payload = await self.get_json("/activities", params=params)
        except asyncio.CancelledError:
            if token is not None and token.cancelled:
                raise FetchCancelled(f"{token!r} cancelled in flight")
            raise

        _ensure_active(token)
        return self._parse_items(payload, kind)

    @staticmethod
    def _parse_items(payload: Any, kind: ActivityKind) -> List[Activity]:
        if isinstance(payload, dict) and isinstance(payload.get("items"), list):
            for raw in payload["items"]:
                if isinstance(raw, dict) and "kind" not in raw and "type" not in raw:
                    raw["kind"] = kind.value
        try:
            return ActivityPage.model_validate(payload).items
        except ValidationError as exc:
            logger.debug("Invalid %s payload: %s", kind.value, exc)
            raise NetworkFailure(
                f"Activity service returned an invalid {kind.value} payload"
            ) from exc

    async def update_status(
        self,
        activity_id: str,
        status: str,
        *,
        kind: Optional[ActivityKind] = None,
    ) -> None:
        """``PATCH /activities/{id}`` with the new status.

        Ids are unique per kind only, so the kind rides along as a query
        parameter when known.
        """
        params = {"kind": kind.value} if kind is not None else None
        await self._request(
            "PATCH",
            f"/activities/{activity_id}",
            params=params,
            json={"status": status},
        )

    # ------------------------------------------------------------------
    # Authentication collaborator
    # ------------------------------------------------------------------

    async def current_user(self) -> UserContext:
        """Resolve the user behind the bearer token via ``GET /auth/me``."""
        try:
            payload = await self.get_json("/auth/me")
        except HttpFailure as exc:
            if exc.status_code in (401, 403):
                raise AuthenticationRequiredError(exc.detail) from exc
            raise
        try:
            return UserContext.model_validate(payload)
        except ValidationError as exc:
            raise AuthenticationRequiredError(
                "Current user could not be resolved"
            ) from exc
