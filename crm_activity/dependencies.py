import logging
from typing import Optional

from fastapi import Depends, Header, Request
from redis.asyncio import Redis

from crm_activity.core.cache import CacheService
from crm_activity.core.config import settings
from crm_activity.core.exceptions import AuthenticationRequiredError
from crm_activity.services.aggregator import ActivityAggregator
from crm_activity.services.sessions import SessionRegistry
from crm_activity.services.summary_service import SummaryService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Redis client factory
# ---------------------------------------------------------------------------


async def get_redis_client() -> Optional[Redis]:
    """Get an async Redis client, or ``None`` when Redis is not configured."""
    if not settings.REDIS_URL:
        return None
    try:
        client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        await client.ping()
        return client
    except Exception:
        logger.warning("Redis unavailable – totals caching disabled for this request")
        return None


async def get_cache_service(
    redis_client: Optional[Redis] = Depends(get_redis_client),
) -> CacheService:
    """Build a :class:`CacheService` backed by the shared Redis client."""
    return CacheService(redis_client=redis_client)


# ---------------------------------------------------------------------------
# Session factories
# ---------------------------------------------------------------------------


def get_session_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "sessions", None)
    if registry is None:
        registry = request.app.state.sessions = SessionRegistry()
    return registry


async def get_bearer_token(
    authorization: Optional[str] = Header(None),
) -> Optional[str]:
    """Extract the bearer token forwarded to the activity API.

    Without the header the call goes out unauthenticated and the
    activity API decides; a header with another scheme is rejected.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationRequiredError("Authorization must be a bearer token")
    return token.strip()


async def get_aggregator(
    token: Optional[str] = Depends(get_bearer_token),
    registry: SessionRegistry = Depends(get_session_registry),
) -> ActivityAggregator:
    """Return the caller's aggregator, resolving the user on first use."""
    return await registry.get(token)


async def get_summary_service(
    aggregator: ActivityAggregator = Depends(get_aggregator),
    cache: CacheService = Depends(get_cache_service),
) -> SummaryService:
    """Build a :class:`SummaryService` on the caller's fetch client."""
    return SummaryService(client=aggregator.client, cache=cache)
