"""Pytest configuration and test helpers."""

import os
import sys
from pathlib import Path


# Ensure the application package is importable when running tests without an
# editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# The module-level engine in peek.db.database must never point at a real
# server during tests; every test builds its own SQLite database instead.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
