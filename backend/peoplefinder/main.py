"""FastAPI application entry point"""
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded

from peoplefinder import __version__
from peoplefinder.api import admin, auth, emergency, health
from peoplefinder.config import settings
from peoplefinder.database import SessionLocal
from peoplefinder.middleware.rate_limit import limiter
from peoplefinder.utils.audit import AuditLogWriter
from peoplefinder.utils.bootstrap import AdminBootstrap
from peoplefinder.utils.cache import TTLCache
from peoplefinder.utils.logger import logger, setup_logging
from peoplefinder.utils.okta import OktaDirectory

# Setup logging
setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared service objects, seed the first admin, tear down on exit"""
    logger.info("People Finder backend starting up", extra={
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "log_level": settings.LOG_LEVEL,
        "rate_limiting": settings.RATE_LIMIT_ENABLED,
        "monitoring": settings.METRICS_ENABLED
    })

    cache = TTLCache(ttl_seconds=settings.CACHE_TTL_SECONDS)
    executor = (
        ThreadPoolExecutor(max_workers=settings.AUDIT_WORKERS, thread_name_prefix="audit")
        if settings.AUDIT_WORKERS > 0 else None
    )
    app.state.cache = cache
    app.state.directory = OktaDirectory(cache)
    app.state.audit_writer = AuditLogWriter(SessionLocal, executor=executor)
    app.state.bootstrap = AdminBootstrap(SessionLocal, settings.INITIAL_ADMIN_EMAIL)

    if not settings.okta_configured:
        logger.warning("Okta is not configured; directory-gated sign-in will fail")
    if settings.JWT_SECRET == "default-secret-change-in-production" and settings.is_production:
        logger.error("JWT_SECRET is still the default value in production")

    app.state.bootstrap.ensure()

    yield

    logger.info("People Finder backend shutting down")
    app.state.audit_writer.shutdown(wait=True)


# Create FastAPI app
app = FastAPI(
    title="People Finder",
    description="Authentication, session and admin API for the People Finder directory",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ===== Middleware Setup =====

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Monitoring middleware
if settings.METRICS_ENABLED:
    from peoplefinder.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    # Prometheus metrics
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health", "/health/ready", "/health/live"],
        inprogress_name="peoplefinder_requests_inprogress",
        inprogress_labels=True
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint=settings.METRICS_PATH, include_in_schema=False)

# Rate limiting (decorated routes consult app.state.limiter even when disabled)
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors"""
    logger.warning(
        "Rate limit exceeded",
        extra={"path": request.url.path, "method": request.method}
    )
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
            "detail": str(exc.detail)
        }
    )

# ===== Route Setup =====

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(emergency.router)
app.include_router(admin.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": "People Finder",
        "version": __version__,
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None
    }


# ===== Error Handlers =====

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors"""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method
        },
        exc_info=True
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred. Please contact support."
        }
    )
