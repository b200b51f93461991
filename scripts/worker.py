#!/usr/bin/env python
"""
Background worker for scheduled exclusion maintenance.

Runs as a separate container from the API so the nightly rebuild of every
user's exclusion cache never competes with listing queries for API workers.
Deploy it with API_SCHEDULER_ENABLED=false on the API so the job runs once.

The exclusion cache is disposable: if this worker is down, listings keep
using the last computed cache and the next run heals it.
"""

import asyncio
import logging
import sys
import time
from datetime import timezone
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select, func

from peek.config import get_settings
from peek.db.database import init_db, async_session
from peek.db.models import User, UserEntityStats
from peek.services.exclusion_service import get_exclusion_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def get_cache_status() -> dict:
    """How many users exist and how many have a computed cache."""
    try:
        async with async_session() as session:
            result = await session.execute(select(func.count()).select_from(User))
            user_count = result.scalar_one_or_none() or 0

            result = await session.execute(select(func.count(func.distinct(UserEntityStats.user_id))))
            computed_users = result.scalar_one_or_none() or 0

            return {
                "user_count": user_count,
                "computed_users": computed_users,
                "needs_recompute": computed_users < user_count,
            }
    except Exception as e:
        logger.error(f"Failed to get cache status: {e}")
        return {"user_count": 0, "computed_users": 0, "needs_recompute": False, "error": str(e)}


async def run_nightly_recompute():
    """Rebuild every user's exclusion cache and log the summary."""
    start_time = time.time()

    logger.info("=" * 60)
    logger.info("STARTING EXCLUSION RECOMPUTE (WORKER)")
    logger.info("=" * 60)

    summary = await get_exclusion_service().recompute_all_users()

    elapsed = time.time() - start_time
    logger.info("=" * 60)
    logger.info(
        f"EXCLUSION RECOMPUTE COMPLETE - {summary['success']} ok, {summary['failed']} failed, "
        f"{int(elapsed // 60)}m {int(elapsed % 60)}s"
    )
    for error in summary["errors"]:
        logger.warning(f"  user {error['user_id']}: {error['error']}")
    logger.info("=" * 60)


async def main():
    """Main worker loop."""
    settings = get_settings()

    logger.info("=" * 60)
    logger.info("PEEK WORKER STARTING")
    logger.info("=" * 60)
    if settings.dev_mode:
        logger.info("  Mode: DEVELOPMENT (DEV_MODE=true) - scheduled recompute DISABLED")
    else:
        logger.info(f"  Mode: PRODUCTION - recompute daily at {settings.exclusion_recompute_hour:02d}:00 UTC")
    logger.info("=" * 60)

    await init_db()

    status = await get_cache_status()
    if status.get("error"):
        logger.error(f"Could not check exclusion cache: {status['error']}")
    else:
        logger.info(f"  Users: {status['user_count']}, with computed cache: {status['computed_users']}")

    # Users without a cache would see unfiltered listings until the nightly run
    if status["needs_recompute"] and not settings.dev_mode:
        logger.info("Some users have no exclusion cache yet - recomputing now")
        await run_nightly_recompute()

    scheduler = AsyncIOScheduler(timezone=timezone.utc)

    if not settings.dev_mode:
        scheduler.add_job(
            run_nightly_recompute,
            CronTrigger(hour=settings.exclusion_recompute_hour, minute=0),
            id="nightly_exclusion_recompute",
            replace_existing=True,
            misfire_grace_time=3600,  # Allow job to run up to 1 hour late
            coalesce=True,  # If multiple runs missed, only run once
        )
        logger.info("Scheduler started")
    else:
        logger.info("Scheduler not started (DEV_MODE=true)")

    scheduler.start()

    # Keep running forever
    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Worker shutting down...")
        scheduler.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
