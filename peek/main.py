"""Peek Library API - FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from datetime import timezone

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from peek.middleware import CorrelationIDMiddleware, CorrelationIdFilter

# Configure logging - correlation ID is "-" outside requests
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationIdFilter())

# Suppress noisy loggers - SQLAlchemy is especially chatty during recomputes
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
logging.getLogger("aiosqlite").setLevel(logging.WARNING)
logging.getLogger("asyncio").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)
logging.getLogger("watchfiles").setLevel(logging.WARNING)

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from peek.config import get_settings
from peek.api.v1.router import api_router
from peek.db.database import init_db, get_db
from peek.db.models import User, UserExcludedEntity
from peek.core.tasks import TaskManager
from peek.services.exclusion_service import get_exclusion_service

logger = logging.getLogger(__name__)
settings = get_settings()

# Rate limiter - 100 requests per minute per IP for general endpoints
# Library listings have their own limit applied via decorator
limiter = Limiter(key_func=get_remote_address, default_limits=["100/minute"])

scheduler = AsyncIOScheduler(
    timezone=timezone.utc,
    job_defaults={
        # Run a missed nightly rebuild when we come back up instead of skipping it
        "misfire_grace_time": 60 * 60,
        "coalesce": True,
        "max_instances": 1,
    },
)
task_manager = TaskManager.get_instance()

NIGHTLY_JOB_ID = "nightly_exclusion_recompute"


async def run_nightly_recompute():
    """Self-heal: rebuild every user's exclusion cache from the source tables."""
    logger.info("Starting nightly exclusion recompute")
    try:
        summary = await get_exclusion_service().recompute_all_users()
        logger.info(f"Nightly exclusion recompute done: {summary['success']} ok, {summary['failed']} failed")
    except Exception as e:
        logger.error(f"Nightly exclusion recompute failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    await init_db()

    if settings.api_scheduler_enabled:
        scheduler.add_job(
            run_nightly_recompute,
            CronTrigger(hour=settings.exclusion_recompute_hour, minute=0),
            id=NIGHTLY_JOB_ID,
            replace_existing=True,
        )
        scheduler.start()
        logger.info(f"Scheduler started - exclusion recompute daily at {settings.exclusion_recompute_hour:02d}:00 UTC")
    else:
        logger.info("API scheduler disabled (API_SCHEDULER_ENABLED=false), nightly recompute runs in the worker")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    await task_manager.cancel_all(timeout=settings.task_shutdown_timeout)
    if scheduler.running:
        scheduler.shutdown()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Per-user, exclusion-aware media library API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - restricted methods and headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID"],
)

# Correlation ID middleware for request tracing
app.add_middleware(CorrelationIDMiddleware)

# Include API routes
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/health/db")
async def db_status(db: AsyncSession = Depends(get_db)):
    """Database reachability plus the size of the exclusion cache."""
    try:
        result = await db.execute(select(func.count()).select_from(User))
        user_count = result.scalar_one_or_none() or 0

        result = await db.execute(select(func.count()).select_from(UserExcludedEntity))
        excluded_count = result.scalar_one_or_none() or 0

        job = scheduler.get_job(NIGHTLY_JOB_ID)
        next_recompute = job.next_run_time.isoformat() if job and job.next_run_time else None

        return {
            "status": "healthy",
            "user_count": user_count,
            "excluded_count": excluded_count,
            "next_recompute": next_recompute,
        }
    except Exception as e:
        logger.error(f"Health check DB error: {e}")
        return {
            "status": "error",
            "error": "Database health check failed",
        }


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
