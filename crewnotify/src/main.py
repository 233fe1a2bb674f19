"""
FastAPI application for the Crew Notify service.

Startup builds the delivery router and the timer service; the timer runs
the scheduled dispatch sweep (and trigger sweeps, when a TriggerSource is
installed on the app before startup) unless TIMER_ENABLED=false. Shutdown
stops the timer and closes the channel clients.

Environment Variables:
    CREWNOTIFY_DB_URL: Database URL
    CREWNOTIFY_ENV: production | development (default: development)
    CREWNOTIFY_LOG_LEVEL: DEBUG | INFO | WARNING | ERROR | CRITICAL (default: INFO)
    TIMER_ENABLED: Run the periodic sweeps in this process (default: true)
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError

from crewnotify.src.api import notifications
from crewnotify.src.config.settings import get_settings
from crewnotify.src.db.database import SessionLocal
from crewnotify.src.services.exceptions import PersistenceError
from crewnotify.src.services.timer_service import build_timer_service
from crewnotify.src.utils.logging_config import get_logger, init_logging


SERVICE_NAME = "crew-notify"
SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = get_logger("api")
    settings = get_settings()
    logger.info("Starting crew-notify", extra={"timer_enabled": settings.timer_enabled})

    if not settings.vapid_configured:
        logger.warning("VAPID keys not configured; web push delivery is disabled")

    # The timer shares the routes' router, including a test override
    router_factory = app.dependency_overrides.get(
        notifications.get_delivery_router, notifications.get_delivery_router
    )
    delivery_router = router_factory()
    app.state.timer = build_timer_service(
        SessionLocal,
        router=delivery_router,
        settings=settings,
        source=getattr(app.state, "trigger_source", None),
    )
    if settings.timer_enabled:
        await app.state.timer.start()

    yield

    logger.info("Shutting down crew-notify")
    await app.state.timer.stop()
    delivery_router.close()


init_logging()

app = FastAPI(
    title="Crew Notify API",
    description="Notification preference and delivery engine: per-recipient "
                "notifications, preferences, quiet hours, duplicate "
                "suppression, and mobile/web push with scheduled retries.",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


def _error_response(
    request: Request,
    logger_name: str,
    log_message: str,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Any] = None,
    **log_extra: Any,
) -> JSONResponse:
    level = "warning" if status_code < 500 else "error"
    getattr(get_logger(logger_name), level)(
        log_message,
        extra={"path": request.url.path, "method": request.method, **log_extra},
    )
    content: Dict[str, Any] = {"error": error, "message": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Pydantic errors raised outside request parsing (e.g. response models)."""
    return _error_response(
        request, "api", "Validation error",
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation Error", "Request validation failed",
        details=exc.errors(include_url=False, include_context=False),
    )


@app.exception_handler(PersistenceError)
async def persistence_exception_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    return _error_response(
        request, "db", "Notification store unavailable",
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Service Unavailable", "The notification store is unavailable. Please try again later.",
        error_detail=str(exc),
    )


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    return _error_response(
        request, "db", "Database error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Database Error", "An error occurred while accessing the database.",
        error_detail=str(exc),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    get_logger("api").error(
        "Unhandled exception",
        extra={"path": request.url.path, "error_type": type(exc).__name__},
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error", "message": "An unexpected error occurred."},
    )


@app.get("/health", tags=["Health"])
async def health_check() -> Dict[str, Any]:
    """Liveness plus whether the in-process timer is running."""
    timer = getattr(app.state, "timer", None)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timer_running": bool(timer and timer.running),
    }


app.state.limiter = notifications.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(notifications.router, prefix="/api")
