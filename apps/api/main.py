"""
FastAPI application entry point.

This module sets up the FastAPI application with all middleware,
routers, and configuration for production use.
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import admin, auth, billing, notifications, pricing_plans
from core.config import settings
from core.cache import TTLCache
from core.database import check_db_connection, init_db
from core.logging import bind_log_context, reset_log_context, setup_logging
import logging
import time
import uuid

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

# Initialize Sentry for error tracking (production)
if settings.SENTRY_DSN:
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
            ],
            # Don't send PII
            send_default_pii=False,
            # Filter sensitive data
            before_send=lambda event, hint: _filter_sensitive_data(event),
        )
        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    except ImportError:
        logger.warning("sentry-sdk not installed, error tracking disabled")


def _filter_sensitive_data(event):
    """Filter sensitive data before sending to Sentry."""
    if "request" in event:
        req = event["request"]
        headers = req.get("headers")
        if isinstance(headers, dict):
            headers.pop("authorization", None)
            headers.pop("cookie", None)
            headers.pop("stripe-signature", None)
        # Webhook bodies carry customer emails.
        req.pop("data", None)
    return event


# Create FastAPI app
app = FastAPI(
    title="BrainBooster API",
    description="Online tutoring platform: accounts, billing and admin dashboard",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# One cache per process; routes reach it via core.cache.get_cache.
app.state.cache = TTLCache(
    max_entries=settings.CACHE_MAX_ENTRIES,
    default_ttl_s=settings.CACHE_TTL_STATS,
)


@app.on_event("startup")
async def create_tables():
    """Create any missing tables."""
    init_db()


# CORS middleware
# Production: set CORS_ORIGINS env var (comma-separated)
# Development: DEBUG=True allows all origins
if settings.DEBUG:
    allowed_origins = ["*"]
elif settings.CORS_ORIGINS:
    allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
else:
    # Fallback for local development
    allowed_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing information, tagged with a request id."""
    start_time = time.time()
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    context_token = bind_log_context(request_id=request_id)

    logger.info(
        f"Request: {request.method} {request.url.path}",
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            }
        }
    )

    try:
        response = await call_next(request)
        process_time = time.time() - start_time

        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )

        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as e:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                }
            }
        )
        raise
    finally:
        reset_log_context(context_token)


# Error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled errors."""
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={
            "extra_fields": {
                "method": request.method,
                "path": request.url.path,
            }
        }
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """
    Simple health check for load balancers and uptime monitors.

    Returns:
        - 200: Core systems operational
        - 503: Database unavailable
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "database": "unavailable",
            }
        )

    return {
        "status": "healthy",
        "timestamp": time.time(),
    }


@app.get("/ping")
async def ping():
    """Minimal ping endpoint for uptime monitors."""
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(billing.router)
app.include_router(notifications.router)
app.include_router(pricing_plans.router)
app.include_router(admin.router)
