from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from envrecon.domain.models import ComponentReconciliation, EnvironmentReconciliation
from envrecon.domain.status import (
    INITIALIZING,
    SKIPPED_PREFIX,
    SKIPPED_RECONCILE,
    VALIDATION_FAILED,
    WAITING_FOR_PARENT,
)
from envrecon.persistence.guards import raise_store_error


async def create_environment_reconciliation(
    session: AsyncSession,
    *,
    organization_id: str,
    team_id: str,
    environment_id: str,
    dag: list[dict[str, Any]],
    start_date_time: datetime,
    status: str = INITIALIZING,
    end_date_time: datetime | None = None,
    error_message: str | None = None,
    estimated_cost: float = 0.0,
) -> EnvironmentReconciliation:
    recon = EnvironmentReconciliation(
        organization_id=organization_id,
        team_id=team_id,
        environment_id=environment_id,
        status=status,
        dag=dag,
        start_date_time=start_date_time,
        end_date_time=end_date_time,
        error_message=error_message or None,
        git_sha="",
        estimated_cost=estimated_cost,
    )
    session.add(recon)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(
            exc,
            operation="create_environment_reconciliation",
            organization_id=organization_id,
            environment_id=environment_id,
        )
    return recon


async def get_environment_reconciliation(
    session: AsyncSession, organization_id: str, reconcile_id: int
) -> EnvironmentReconciliation | None:
    result = await session.execute(
        select(EnvironmentReconciliation).where(
            EnvironmentReconciliation.reconcile_id == reconcile_id,
            EnvironmentReconciliation.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def list_environment_reconciliations(
    session: AsyncSession, organization_id: str, environment_id: str
) -> list[EnvironmentReconciliation]:
    result = await session.execute(
        select(EnvironmentReconciliation)
        .where(
            EnvironmentReconciliation.environment_id == environment_id,
            EnvironmentReconciliation.organization_id == organization_id,
        )
        .order_by(
            EnvironmentReconciliation.start_date_time.desc(),
            EnvironmentReconciliation.reconcile_id.desc(),
        )
    )
    return list(result.scalars().all())


async def get_latest_non_validation_failure(
    session: AsyncSession, organization_id: str, environment_id: str
) -> EnvironmentReconciliation | None:
    # Open runs (no end time) sort first, as Postgres orders NULLs under DESC.
    result = await session.execute(
        select(EnvironmentReconciliation)
        .where(
            EnvironmentReconciliation.environment_id == environment_id,
            EnvironmentReconciliation.organization_id == organization_id,
            EnvironmentReconciliation.status != VALIDATION_FAILED,
        )
        .order_by(
            EnvironmentReconciliation.end_date_time.desc().nulls_first(),
            EnvironmentReconciliation.reconcile_id.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def merge_environment_reconciliation(
    session: AsyncSession, recon: EnvironmentReconciliation, **values: Any
) -> EnvironmentReconciliation:
    for key, value in values.items():
        setattr(recon, key, value)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(
            exc, operation="update_environment_reconciliation", reconcile_id=recon.reconcile_id
        )
    return recon


async def set_environment_reconciliation_cost(
    session: AsyncSession, reconcile_id: int, estimated_cost: float
) -> int:
    # Scalar-only write; never round-trip the run's children from memory.
    result = await session.execute(
        update(EnvironmentReconciliation)
        .where(EnvironmentReconciliation.reconcile_id == reconcile_id)
        .values(estimated_cost=estimated_cost)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def retire_open_environment_reconciliations(
    session: AsyncSession,
    *,
    organization_id: str,
    team_id: str,
    environment_id: str,
    keep_reconcile_ids: Sequence[int],
) -> int:
    stmt = update(EnvironmentReconciliation).where(
        EnvironmentReconciliation.organization_id == organization_id,
        EnvironmentReconciliation.team_id == team_id,
        EnvironmentReconciliation.environment_id == environment_id,
        EnvironmentReconciliation.end_date_time.is_(None),
        EnvironmentReconciliation.status != SKIPPED_RECONCILE,
    )
    if keep_reconcile_ids:
        stmt = stmt.where(EnvironmentReconciliation.reconcile_id.notin_(list(keep_reconcile_ids)))
    # end_date_time stays untouched; a retired run is identified by status alone.
    result = await session.execute(
        stmt.values(status=SKIPPED_RECONCILE).execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


async def create_component_reconciliation(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_reconciliation_id: int,
    component_id: str,
    start_date_time: datetime,
    status: str = WAITING_FOR_PARENT,
) -> ComponentReconciliation:
    recon = ComponentReconciliation(
        organization_id=organization_id,
        environment_reconciliation_id=environment_reconciliation_id,
        component_id=component_id,
        status=status,
        start_date_time=start_date_time,
    )
    session.add(recon)
    await session.flush()
    return recon


async def get_component_reconciliation(
    session: AsyncSession, organization_id: str, reconcile_id: int
) -> ComponentReconciliation | None:
    result = await session.execute(
        select(ComponentReconciliation).where(
            ComponentReconciliation.reconcile_id == reconcile_id,
            ComponentReconciliation.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def merge_component_reconciliation(
    session: AsyncSession, recon: ComponentReconciliation, **values: Any
) -> ComponentReconciliation:
    for key, value in values.items():
        setattr(recon, key, value)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(
            exc, operation="update_component_reconciliation", reconcile_id=recon.reconcile_id
        )
    return recon


async def list_component_reconciliations(
    session: AsyncSession, organization_id: str, component_id: str
) -> list[ComponentReconciliation]:
    result = await session.execute(
        select(ComponentReconciliation)
        .where(
            ComponentReconciliation.component_id == component_id,
            ComponentReconciliation.organization_id == organization_id,
        )
        .order_by(
            ComponentReconciliation.start_date_time.desc(),
            ComponentReconciliation.reconcile_id.desc(),
        )
    )
    return list(result.scalars().all())


async def get_latest_meaningful_component_reconciliation(
    session: AsyncSession, organization_id: str, component_id: str
) -> ComponentReconciliation | None:
    # Skip-family statuses, parent waits and explicitly skipped rows never count as "latest".
    result = await session.execute(
        select(ComponentReconciliation)
        .where(
            ComponentReconciliation.component_id == component_id,
            ComponentReconciliation.organization_id == organization_id,
            ComponentReconciliation.status.not_like(f"{SKIPPED_PREFIX}%"),
            ComponentReconciliation.status != WAITING_FOR_PARENT,
            or_(
                ComponentReconciliation.is_skipped.is_(None),
                ComponentReconciliation.is_skipped.is_(False),
            ),
        )
        .order_by(
            ComponentReconciliation.start_date_time.desc(),
            ComponentReconciliation.reconcile_id.desc(),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_latest_component_reconciliations(
    session: AsyncSession, organization_id: str, component_ids: Sequence[str]
) -> list[ComponentReconciliation]:
    if not component_ids:
        return []
    # Grouped top-1: each component's row whose start time equals that component's max.
    inner = aliased(ComponentReconciliation)
    latest_start = (
        select(func.max(inner.start_date_time))
        .where(inner.component_id == ComponentReconciliation.component_id)
        .correlate(ComponentReconciliation)
        .scalar_subquery()
    )
    result = await session.execute(
        select(ComponentReconciliation)
        .where(
            ComponentReconciliation.organization_id == organization_id,
            ComponentReconciliation.component_id.in_(list(component_ids)),
            ComponentReconciliation.start_date_time == latest_start,
        )
        .order_by(ComponentReconciliation.component_id, ComponentReconciliation.reconcile_id.desc())
    )
    latest: dict[str, ComponentReconciliation] = {}
    for recon in result.scalars().all():
        # Equal start times resolve to the newest reconcile id.
        latest.setdefault(recon.component_id, recon)
    return list(latest.values())


async def retire_open_component_reconciliations(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_reconcile_id: int,
    component_id: str,
    keep_reconcile_ids: Sequence[int],
) -> int:
    stmt = update(ComponentReconciliation).where(
        ComponentReconciliation.organization_id == organization_id,
        ComponentReconciliation.environment_reconciliation_id == environment_reconcile_id,
        ComponentReconciliation.component_id == component_id,
        ComponentReconciliation.end_date_time.is_(None),
        ComponentReconciliation.status != SKIPPED_RECONCILE,
    )
    if keep_reconcile_ids:
        stmt = stmt.where(ComponentReconciliation.reconcile_id.notin_(list(keep_reconcile_ids)))
    result = await session.execute(
        stmt.values(status=SKIPPED_RECONCILE).execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)
