"""
Table Allocation Engine - Main Application Entry Point

Restaurant table allocation and booking lifecycle service:
- Conflict-free table assignment with single-table and two-table combinations
- Request accept/decline with alternatives when nothing fits
- Enforced booking lifecycle with append-only status history
- Waitlist promotion when tables free up
- Optimistic compare-and-swap on bookings and tables for concurrent hosts
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.errors import register_error_handlers
from app.core.logging import setup_logging, get_logger
from app.core.metrics import metrics_endpoint
from app.api.router import api_router
from app.api.middleware import RequestLoggingMiddleware
from app.api.deps import get_clock, get_notifier
from app.db.session import get_session_factory
from app.infrastructure.redis_client import get_redis, close_redis
from app.tasks.sweeper import start_sweeper

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
        booking_policy=settings.BOOKING_POLICY,
        notifier=settings.NOTIFIER,
    )

    if settings.NOTIFIER == "redis":
        redis_client = await get_redis()
        if redis_client:
            logger.info("redis_ready")
        else:
            logger.warning("redis_unavailable", message="Booking events will not be published")

    sweeper = None
    if settings.SWEEPER_ENABLED:
        sweeper = start_sweeper(get_session_factory(), clock=get_clock(), notifier=get_notifier())

    yield

    # Cleanup
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Table allocation and booking lifecycle engine for restaurant reservations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

register_error_handlers(app)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "booking_policy": settings.BOOKING_POLICY,
    }


@app.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
