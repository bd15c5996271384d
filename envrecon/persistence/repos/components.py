from __future__ import annotations

from collections.abc import Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.domain.models import Component, ComponentReconciliation
from envrecon.persistence.guards import raise_store_error


async def list_live_components(
    session: AsyncSession, organization_id: str, environment_id: str
) -> list[Component]:
    result = await session.execute(
        select(Component)
        .where(
            Component.organization_id == organization_id,
            Component.environment_id == environment_id,
            Component.is_deleted.is_(False),
        )
        .order_by(Component.position, Component.id)
    )
    return list(result.scalars().all())


async def list_live_components_with_latest(
    session: AsyncSession, organization_id: str, environment_id: str
) -> list[tuple[Component, ComponentReconciliation | None]]:
    # Outer join so components that never ran still show up with no latest run.
    result = await session.execute(
        select(Component, ComponentReconciliation)
        .outerjoin(
            ComponentReconciliation,
            ComponentReconciliation.reconcile_id == Component.latest_comp_recon_id,
        )
        .where(
            Component.organization_id == organization_id,
            Component.environment_id == environment_id,
            Component.is_deleted.is_(False),
        )
        .order_by(Component.position, Component.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def get_component(
    session: AsyncSession, organization_id: str, component_id: str
) -> Component | None:
    result = await session.execute(
        select(Component).where(
            Component.id == component_id,
            Component.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def batch_create(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_id: str,
    names: Sequence[str],
) -> list[Component]:
    if not names:
        return []
    # Positions continue after every row ever created here, deleted ones included.
    result = await session.execute(
        select(func.coalesce(func.max(Component.position), 0)).where(
            Component.environment_id == environment_id
        )
    )
    start = int(result.scalar_one())
    components = [
        Component(
            organization_id=organization_id,
            environment_id=environment_id,
            name=name,
            position=start + offset,
        )
        for offset, name in enumerate(names, start=1)
    ]
    session.add_all(components)
    try:
        await session.flush()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(
            exc,
            operation="batch_create_components",
            conflict_message="component already exists",
            environment_id=environment_id,
            count=len(names),
        )
    return components


async def batch_soft_delete(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_id: str,
    components: Sequence[Component],
) -> int:
    if not components:
        return 0
    ids = [component.id for component in components]
    try:
        result = await session.execute(
            update(Component)
            .where(
                Component.id.in_(ids),
                Component.organization_id == organization_id,
                Component.environment_id == environment_id,
            )
            .values(is_deleted=True)
            .execution_options(synchronize_session="fetch")
        )
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(exc, operation="batch_delete_components", environment_id=environment_id)
    return int(result.rowcount or 0)


async def set_latest_reconciliation(session: AsyncSession, component_id: str, reconcile_id: int) -> None:
    await session.execute(
        update(Component)
        .where(Component.id == component_id)
        .values(latest_comp_recon_id=reconcile_id)
        .execution_options(synchronize_session=False)
    )
