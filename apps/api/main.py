"""
FastAPI application for the coaching session engine.

Wires the booking webhook, coach session and admin review routers together
with request logging, error rendering and (optionally) Sentry.
"""
import logging
import time
import uuid
from typing import List

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import check_db_connection
from core.exceptions import APIException
from core.logging import log_event, setup_logging
from routers import admin_sessions, booking_webhook, sessions

setup_logging()
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

SENSITIVE_HEADERS = ("authorization", "cookie", "x-cal-signature-256")


def _scrub_event(event, hint):
    """Strip credentials and webhook signatures from Sentry events."""
    headers = (event.get("request") or {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in SENSITIVE_HEADERS:
                headers.pop(name)
    return event


def _init_sentry() -> None:
    import sentry_sdk
    from sentry_sdk.integrations.celery import CeleryIntegration
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=APP_VERSION,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[FastApiIntegration(transaction_style="endpoint"), SqlalchemyIntegration(), CeleryIntegration()],
            # Parent and child details stay out of error reports.
            send_default_pii=False,
            before_send=_scrub_event,
        )
    except Exception as e:
        logger.error(f"Sentry init failed: {e}")
        return
    logger.info(f"Sentry enabled ({settings.ENVIRONMENT})")


def _cors_origins() -> List[str]:
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


if settings.SENTRY_DSN:
    _init_sentry()

docs_enabled = settings.DEBUG or settings.EXPOSE_API_DOCS
app = FastAPI(
    title="Coaching Session Engine API",
    description="Coach assignment, offline conversion and session completion for one-on-one reading coaching",
    version=APP_VERSION,
    docs_url="/docs" if docs_enabled else None,
    redoc_url="/redoc" if docs_enabled else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One log line per request, tagged with a request id echoed back to the client."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            f"Request failed: {request.method} {request.url.path}",
            extra={"extra_fields": {"event": "request_failed", "request_id": request_id, "path": request.url.path}},
        )
        raise

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    log_event(
        logger, "request_completed",
        request_id=request_id, method=request.method, path=request.url.path,
        status_code=response.status_code, duration_ms=elapsed_ms,
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException):
    """Rejections carry a machine-readable error_code plus any extra fields."""
    log_event(
        logger, "request_rejected",
        path=request.url.path, status_code=exc.status_code, error_code=exc.error_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={"extra_fields": {"event": "unhandled_exception", "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error_code": "internal_error"},
    )


@app.get("/health")
async def health():
    """200 when the database answers, 503 otherwise."""
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "healthy", "version": APP_VERSION}


@app.get("/ping")
async def ping():
    """No dependencies checked."""
    return {"pong": True}


app.include_router(booking_webhook.router)
app.include_router(sessions.router)
app.include_router(admin_sessions.router)
