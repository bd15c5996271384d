from __future__ import annotations

import os
import tempfile

# Point the app at a throwaway SQLite file before any envrecon module reads settings.
_DB_DIR = tempfile.mkdtemp(prefix="envrecon-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR}/envrecon.db")
os.environ.setdefault("EVENT_DELIVERY_MODE", "inline")
os.environ.setdefault("OBJECT_STORE_PROVIDER", "local")
os.environ.setdefault("OBJECT_STORE_LOCAL_DIR", os.path.join(_DB_DIR, "objects"))

import pytest

from envrecon.domain.models import Base
from envrecon.persistence.db import engine
from envrecon.services.events.handlers import register_default_handlers


@pytest.fixture(autouse=True)
async def database_schema() -> None:
    # Each test starts from empty tables.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def default_event_handlers() -> None:
    register_default_handlers()
