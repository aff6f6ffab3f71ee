"""
DeliveryHub application factory.

``create_app`` assembles the HTTP API and the real-time endpoint. Every
error leaves as ``{"error", "message", "request_id"}``. Domain errors use
their own status code; anything unexpected becomes a generic 500.

Run with ``uvicorn deliveryhub.main:app``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from deliveryhub.api.deps import limiter, make_authenticator
from deliveryhub.api.v1 import orders_router, realtime_router, users_router
from deliveryhub.core.config import Settings, get_settings
from deliveryhub.core.errors import AuthError, DeliveryHubError
from deliveryhub.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from deliveryhub.core.security import get_credential_service
from deliveryhub.database.connection import (
    check_database_health,
    close_database_connections,
    get_session_factory,
)
from deliveryhub.services.realtime.fanout import RedisFanout
from deliveryhub.services.realtime.hub import RealtimeHub

configure_logging()
logger = get_logger(__name__)

health_router = APIRouter(tags=["Health"])


def _service_info(settings: Settings) -> dict[str, str]:
    return {"service": settings.app_name, "version": settings.app_version}


@health_router.get("/health", summary="Process is up")
async def health_check() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "healthy",
        **_service_info(settings),
        "environment": settings.environment,
    }


@health_router.get("/live", summary="Liveness check")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive", **_service_info(get_settings())}


@health_router.get(
    "/ready",
    summary="Readiness check",
    responses={503: {"description": "Database unreachable"}},
)
async def readiness_check():
    """200 once the database answers a single ping, 503 otherwise."""
    settings = get_settings()
    if await check_database_health(max_retries=1):
        return {
            "status": "ready",
            **_service_info(settings),
            "environment": settings.environment,
            "dependencies_ready": True,
            "database": "healthy",
        }

    logger.warning("Not ready", database="unhealthy")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "not_ready",
            "service": settings.app_name,
            "dependencies_ready": False,
            "database": "unhealthy",
        },
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Build the real-time hub at startup and dispose of it and the engine at
    shutdown.

    A hub already placed on ``app.state`` is kept as is and left running.
    With ``APP_REDIS_URL`` set, the hub relays events to the other workers.
    """
    settings = get_settings()
    logger.info(
        "DeliveryHub starting",
        environment=settings.environment,
        version=settings.app_version,
    )

    owned_hub = None
    if getattr(app.state, "hub", None) is None:
        fanout = (
            RedisFanout(settings.redis_url, channel=settings.realtime_channel)
            if settings.redis_url
            else None
        )
        owned_hub = RealtimeHub(
            make_authenticator(get_session_factory(), get_credential_service()),
            outbox_size=settings.realtime_outbox_size,
            fanout=fanout,
        )
        await owned_hub.start()
        app.state.hub = owned_hub

    yield

    if owned_hub is not None:
        await owned_hub.close()
    await close_database_connections()
    logger.info("DeliveryHub stopped")


async def correlate_requests(request: Request, call_next):
    """Tag each request with an X-Request-ID (the caller's, or a fresh one)."""
    request_id = set_request_id(request.headers.get("X-Request-ID"))
    try:
        with log_performance(
            logger, "http_request", method=request.method, path=request.url.path
        ):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_context()


def _error_response(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, **extra, "request_id": get_request_id()},
    )


async def handle_domain_error(request: Request, exc: DeliveryHubError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request rejected",
        path=request.url.path,
        error=exc.kind,
        message=exc.message,
        retryable=exc.retryable,
        context={key: str(value) for key, value in exc.context.items()},
    )
    response = _error_response(exc.status_code, **exc.to_dict())
    if isinstance(exc, AuthError):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies, query strings and path ids all map to 400."""
    logger.warning("Malformed request", path=request.url.path, errors=exc.errors())
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        "validation_error",
        "Request validation failed",
        details=jsonable_encoder(exc.errors()),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "internal", "An unexpected error occurred"
    )


def create_app() -> FastAPI:
    settings = get_settings()
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Delivery order lifecycle and real-time notification API",
        lifespan=lifespan,
        debug=settings.debug,
    )

    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    application.add_exception_handler(DeliveryHubError, handle_domain_error)
    application.add_exception_handler(RequestValidationError, handle_validation_error)
    application.add_exception_handler(Exception, handle_unexpected_error)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    application.middleware("http")(correlate_requests)

    application.include_router(health_router)
    for router in (orders_router, users_router, realtime_router):
        application.include_router(router, prefix=settings.api_v1_prefix)

    return application


app = create_app()
