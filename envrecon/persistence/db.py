from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from envrecon.core.config import Settings, get_settings


def engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"pool_pre_ping": True}
    # SQLite (tests, local dev) keeps the driver defaults; pool sizing applies to asyncpg only.
    if settings.database_url.startswith("sqlite"):
        return options
    # The component fan-out holds one connection per live component while it settles.
    options.update(
        pool_size=max(1, settings.api_db_pool_size),
        max_overflow=max(0, settings.api_db_max_overflow),
        pool_timeout=30,
        pool_recycle=1800,
    )
    if settings.api_db_statement_timeout_ms > 0:
        options["connect_args"] = {
            "server_settings": {"statement_timeout": str(settings.api_db_statement_timeout_ms)}
        }
    return options


_settings = get_settings()
engine = create_async_engine(_settings.database_url, **engine_options(_settings))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session
