"""API-layer dependency functions.

Re-exports all dependency factories from ``crm_activity.dependencies`` so
that endpoint modules only need to import from ``crm_activity.api.deps``.
"""

from crm_activity.dependencies import (
    # Session factories
    get_aggregator,
    get_bearer_token,
    get_session_registry,
    # Service factories
    get_cache_service,
    get_summary_service,
    # Redis
    get_redis_client,
)

__all__ = [
    "get_aggregator",
    "get_bearer_token",
    "get_session_registry",
    "get_cache_service",
    "get_summary_service",
    "get_redis_client",
]
