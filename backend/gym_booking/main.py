"""
Gym Class Booking API - Main Application Entry Point

Capacity-bounded class reservations with a FIFO waitlist:
- Per-class optimistic locking; no overbooking, no lost seats
- Freed seats held for the waitlist head until confirmed or expired
- Background sweeper releasing unanswered seat holds
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gym_booking.core.config import get_settings
from gym_booking.core.exceptions import ReservationError
from gym_booking.core.logging import setup_logging, get_logger
from gym_booking.core.metrics import metrics_endpoint
from gym_booking.api.router import api_router
from gym_booking.api.middleware import RequestLoggingMiddleware
from gym_booking.db.session import AsyncSessionLocal
from gym_booking.services.cache_service import get_redis, close_redis, get_cache_stats
from gym_booking.services.promotion_expiry import PromotionExpiryWorker

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
        promotion_timeout_minutes=settings.PROMOTION_TIMEOUT_MINUTES,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache or notifications")

    sweeper = None
    if settings.PROMOTION_SWEEP_ENABLED:
        sweeper = PromotionExpiryWorker(AsyncSessionLocal, settings.PROMOTION_SWEEP_INTERVAL_SECONDS)
        sweeper.start()

    yield

    if sweeper is not None:
        await sweeper.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Class reservations with capacity control and waitlist promotion",
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

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    get_logger(__name__).info("reservation_rejected", code=exc.code, **exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": exc.details,
            }
        },
    )


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
