from __future__ import annotations

import os
import tempfile
from pathlib import Path

# Point settings at a throwaway SQLite file before any uploadgate module builds the engine.
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="uploadgate-tests-"))
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_DIR / 'uploadgate.db'}"
)
os.environ.setdefault("UPLOAD_TOKEN_PEPPER", "test-pepper-not-for-production")
os.environ.setdefault("OBJECT_STORE_PROVIDER", "fake")
os.environ.setdefault("PORTAL_BASE_URL", "https://portal.test")

import pytest  # noqa: E402

from uploadgate.domain.models import Base  # noqa: E402
from uploadgate.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Each test starts from empty tables on its own event loop.
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()
