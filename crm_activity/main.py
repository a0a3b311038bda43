from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from crm_activity.api.v1.router import router as api_v1_router
from crm_activity.core.exceptions import (
    ActivityNotFoundError,
    AmbiguousActivityError,
    AuthenticationRequiredError,
    HttpFailure,
    InvalidFilterState,
    InvalidScopeError,
    InvalidStatusTransitionError,
    NetworkFailure,
)
from crm_activity.core.config import settings as app_settings
from crm_activity.core.rate_limit import limiter
from crm_activity.services.sessions import SessionRegistry

# Configure logging
logging.basicConfig(level=getattr(logging, app_settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the per-caller aggregator sessions for the app's lifetime."""
    if getattr(app.state, "sessions", None) is None:
        app.state.sessions = SessionRegistry()
    logger.info("Activity session registry ready")
    yield
    # Shutdown: cancel every channel, ticker and upstream client
    await app.state.sessions.close_all()
    logger.info("Activity sessions closed")


app = FastAPI(
    title="CRM Activity Aggregator",
    description="Time-scoped reminders, meetings and history for CRM users",
    version="0.1.0",
    lifespan=lifespan,
    debug=app_settings.DEBUG,
)

# Attach rate limiter state so slowapi middleware can find it
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware – restricted to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in app_settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.exception_handler(AuthenticationRequiredError)
async def authentication_required_handler(
    request: Request, exc: AuthenticationRequiredError
):
    logger.warning("Authentication required: %s", exc.detail)
    return JSONResponse(
        status_code=401,
        content={"detail": exc.detail, "type": "authentication_required"},
    )


@app.exception_handler(ActivityNotFoundError)
async def activity_not_found_handler(request: Request, exc: ActivityNotFoundError):
    logger.warning("Activity not found: %s", exc.detail)
    return JSONResponse(
        status_code=404,
        content={"detail": exc.detail, "type": "activity_not_found"},
    )


@app.exception_handler(AmbiguousActivityError)
async def ambiguous_activity_handler(request: Request, exc: AmbiguousActivityError):
    logger.warning("Ambiguous activity id: %s", exc.detail)
    return JSONResponse(
        status_code=409,
        content={"detail": exc.detail, "type": "ambiguous_activity"},
    )


@app.exception_handler(InvalidStatusTransitionError)
async def invalid_status_transition_handler(
    request: Request, exc: InvalidStatusTransitionError
):
    logger.warning("Invalid status transition: %s", exc.detail)
    return JSONResponse(
        status_code=400,
        content={"detail": exc.detail, "type": "invalid_status_transition"},
    )


@app.exception_handler(InvalidScopeError)
async def invalid_scope_handler(request: Request, exc: InvalidScopeError):
    logger.warning("Invalid scope: %s", exc.detail)
    return JSONResponse(
        status_code=400,
        content={"detail": exc.detail, "type": "invalid_scope"},
    )


@app.exception_handler(InvalidFilterState)
async def invalid_filter_state_handler(request: Request, exc: InvalidFilterState):
    logger.warning("Invalid filter state: %s", exc.detail)
    return JSONResponse(
        status_code=400,
        content={"detail": exc.detail, "type": "invalid_filter_state"},
    )


@app.exception_handler(HttpFailure)
async def upstream_http_failure_handler(request: Request, exc: HttpFailure):
    logger.error("Activity service returned %s: %s", exc.status_code, exc.detail)
    return JSONResponse(
        status_code=502,
        content={
            "detail": exc.detail,
            "upstream_status": exc.status_code,
            "type": "upstream_http_failure",
        },
    )


@app.exception_handler(NetworkFailure)
async def upstream_unreachable_handler(request: Request, exc: NetworkFailure):
    logger.error("Activity service unreachable: %s", exc.detail)
    return JSONResponse(
        status_code=503,
        content={"detail": exc.detail, "type": "upstream_unreachable"},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation error: %s", exc.errors())
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": exc.errors(),
            "type": "validation_error",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected/unhandled exceptions.

    Returns a generic 500 response so that raw stack traces are never
    leaked to the client.
    """
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected internal error occurred. Please try again later.",
            "type": "internal_server_error",
        },
    )
