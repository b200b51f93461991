#!/usr/bin/env python
"""Run Alembic migrations automatically on container startup."""

import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from alembic.config import Config
from alembic import command

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).parent.parent / "alembic.ini"


def run_migrations() -> bool:
    """Upgrade the database to the latest schema revision."""
    try:
        logger.info("Running database migrations (alembic upgrade head)")
        command.upgrade(Config(str(ALEMBIC_INI)), "head")
        logger.info("Migrations complete - database schema is up to date")
        return True
    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        return False


if __name__ == "__main__":
    success = run_migrations()
    sys.exit(0 if success else 1)
