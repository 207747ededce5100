"""
Stall Booking API - Main Application Entry Point

Exhibition stall reservations for event organizers:
- Exactly one winner when many vendors race for the same stall
- Per-vendor reservation quota enforced under concurrency
- Confirmation delivery off the request path with bounded retry
- Redis-cached floor plan listings with invalidation on every change
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stall_booking.api.deps import drain_notifications
from stall_booking.api.exception_handlers import register_exception_handlers
from stall_booking.api.middleware import RequestLoggingMiddleware
from stall_booking.api.router import api_router
from stall_booking.core.config import get_settings
from stall_booking.core.logging import setup_logging, get_logger
from stall_booking.core.metrics import metrics_endpoint
from stall_booking.services.cache_service import get_redis, close_redis, get_cache_stats
from stall_booking.services.store_factory import close_repository

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        store_backend=settings.STORE_BACKEND,
        notification_backend=settings.NOTIFICATION_BACKEND,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    yield

    # Let queued confirmations finish before tearing down
    await drain_notifications()
    await close_redis()
    await close_repository()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Exhibition stall reservations with concurrency-safe allocation",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus scrape target."""
    return metrics_endpoint()


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
