from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.domain.models import Environment
from envrecon.persistence.guards import raise_store_error


async def find_by_name(
    session: AsyncSession, organization_id: str, team_id: str, name: str
) -> Environment | None:
    # Match the unique key, including soft-deleted rows, so creation never collides silently.
    result = await session.execute(
        select(Environment).where(
            Environment.organization_id == organization_id,
            Environment.team_id == team_id,
            Environment.name == name,
        )
    )
    return result.scalar_one_or_none()


async def get_environment(
    session: AsyncSession, organization_id: str, environment_id: str
) -> Environment | None:
    result = await session.execute(
        select(Environment).where(
            Environment.id == environment_id,
            Environment.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def list_environments(session: AsyncSession, organization_id: str, team_id: str) -> list[Environment]:
    result = await session.execute(
        select(Environment)
        .where(
            Environment.organization_id == organization_id,
            Environment.team_id == team_id,
            Environment.is_deleted.is_(False),
        )
        .order_by(Environment.created_at, Environment.id)
    )
    return list(result.scalars().all())


async def create_environment(
    session: AsyncSession,
    *,
    organization_id: str,
    team_id: str,
    name: str,
    dag: list[dict[str, Any]],
) -> Environment:
    env = Environment(organization_id=organization_id, team_id=team_id, name=name, dag=dag)
    session.add(env)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(
            exc,
            operation="create_environment",
            conflict_message="environment already exists",
            organization_id=organization_id,
            team_id=team_id,
            name=name,
        )
    return env


async def merge_and_save(session: AsyncSession, env: Environment, **values: Any) -> Environment:
    # Apply a partial update onto the loaded row; last write wins.
    for key, value in values.items():
        setattr(env, key, value)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(exc, operation="update_environment", environment_id=env.id)
    return env


async def stamp_last_reconcile(session: AsyncSession, environment_id: str, stamped_at: datetime) -> int:
    # Column-only write so concurrent dag updates are not overwritten.
    result = await session.execute(
        update(Environment)
        .where(Environment.id == environment_id)
        .values(last_reconcile_datetime=stamped_at)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
