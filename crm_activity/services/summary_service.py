import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from crm_activity.core.cache import CacheService
from crm_activity.core.config import settings
from crm_activity.core.exceptions import HttpFailure, InvalidFilterState
from crm_activity.schemas.filters import UserContext
from crm_activity.services.fetch_client import ActivityFetchClient

logger = logging.getLogger(__name__)

_EXTENDED_PATH = "/activities/summary/overview-extended"
_LEGACY_PATH = "/activities/summary/overview"
_EMPLOYEE_PATH = "/activities/summary/employee-extended"
_COUNTERS = ("overdue", "pending", "done", "sent", "failed")


def _empty_counts() -> Dict[str, int]:
    return {name: 0 for name in _COUNTERS}


def fold_legacy_buckets(buckets: Dict[str, Any]) -> Dict[str, Any]:
    """Convert legacy ``{bucket: {CALL|EMAIL: {STATUS: n}}}`` counts.

    The legacy endpoint knows only ``delayed``, ``today`` and
    ``tomorrow``; week and month come back as zeros.
    """

    def count(bucket: str, status: str) -> int:
        per_kind = buckets.get(bucket) or {}
        total = 0
        for kind in ("CALL", "EMAIL"):
            value = (per_kind.get(kind) or {}).get(status, 0)
            total += value if isinstance(value, int) else 0
        return total

    overdue = count("delayed", "PENDING")
    today = {
        "overdue": overdue,
        "pending": count("today", "PENDING"),
        "done": count("today", "DONE"),
        "sent": count("today", "SENT"),
        "failed": count("today", "FAILED"),
    }
    tomorrow = {
        "overdue": 0,
        "pending": count("tomorrow", "PENDING"),
        "done": count("tomorrow", "DONE"),
        "sent": count("tomorrow", "SENT"),
        "failed": count("tomorrow", "FAILED"),
    }
    total = {"overdue": overdue}
    for name in _COUNTERS[1:]:
        total[name] = today[name] + tomorrow[name]

    return {
        "total": total,
        "today": today,
        "tomorrow": tomorrow,
        "week": _empty_counts(),
        "month": _empty_counts(),
        "generatedAt": datetime.now(timezone.utc).isoformat(),
    }


class SummaryService:
    """Overview totals with a short-lived per-user cache.

    Dependencies are injected via the constructor so the class remains
    stateless and easily testable.
    """

    def __init__(
        self,
        client: ActivityFetchClient,
        cache: Optional[CacheService] = None,
        *,
        ttl: Optional[int] = None,
    ) -> None:
        self._client = client
        self._cache: CacheService = cache or CacheService()
        self._ttl = ttl if ttl is not None else settings.SUMMARY_CACHE_TTL

    def _cache_key(self, user: UserContext) -> str:
        return self._cache.key("totals", "overview", user.id)

    async def overview_totals(self, user: UserContext) -> Dict[str, Any]:
        """Return ``{total, today, tomorrow, week, month, generatedAt}``.

        Falls back to the legacy bucket endpoint when the extended one
        fails; a failure of both propagates.
        """
        key = self._cache_key(user)
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        try:
            data = await self._client.get_json(_EXTENDED_PATH)
        except HttpFailure as exc:
            logger.info(
                "Extended overview totals unavailable (%s); using legacy summary",
                exc.status_code,
            )
            legacy = await self._client.get_json(_LEGACY_PATH)
            buckets = legacy.get("buckets") if isinstance(legacy, dict) else None
            data = fold_legacy_buckets(buckets or {})

        await self._cache.set_json(key, data, ttl=self._ttl)
        return data

    async def employee_totals(
        self, user: UserContext, employee_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Extended totals for one employee, or for everyone without *employee_id*.

        Only owners and admins may look at other people's counters.
        Entries expire through the TTL alone.
        """
        if not user.is_privileged:
            raise InvalidFilterState("Employee totals are limited to owners and admins")

        key = self._cache.key("totals", "employee", user.id, employee_id or "all")
        cached = await self._cache.get_json(key)
        if cached is not None:
            return cached

        params = {"userId": employee_id} if employee_id else None
        data = await self._client.get_json(_EMPLOYEE_PATH, params=params)
        await self._cache.set_json(key, data, ttl=self._ttl)
        return data

    async def invalidate(self, user: UserContext) -> None:
        await self._cache.invalidate(self._cache_key(user))
