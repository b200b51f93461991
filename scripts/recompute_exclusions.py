#!/usr/bin/env python
"""
Rebuild the exclusion cache by hand.

Usage:
    python scripts/recompute_exclusions.py            # every user
    python scripts/recompute_exclusions.py --user 7   # one user (repeatable)

Safe to run at any time: the cache is derived from restrictions, hides and
the catalog, and each user is rebuilt in a single transaction.
"""

import argparse
import asyncio
import logging
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from peek.db.database import engine, init_db
from peek.services.exclusion_service import get_exclusion_service

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute per-user exclusion caches")
    parser.add_argument(
        "--user",
        type=int,
        action="append",
        dest="user_ids",
        help="Only recompute this user ID (may be given more than once)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log per-phase counts",
    )
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger("peek").setLevel(logging.DEBUG)

    await init_db()
    service = get_exclusion_service()
    failed = 0

    try:
        if args.user_ids:
            for user_id in args.user_ids:
                try:
                    result = await service.recompute_for_user(user_id)
                    logger.info(f"User {user_id}: {result['excluded']} excluded {result['by_reason']}")
                except Exception as e:
                    failed += 1
                    logger.error(f"User {user_id} failed: {e}")
        else:
            summary = await service.recompute_all_users()
            failed = summary["failed"]
            logger.info(f"Recomputed {summary['success']} users, {failed} failed")
            for error in summary["errors"]:
                logger.error(f"  user {error['user_id']}: {error['error']}")
    finally:
        await engine.dispose()

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
