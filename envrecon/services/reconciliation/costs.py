from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from envrecon.core.errors import NotFoundError
from envrecon.domain.events import ComponentCostUpdatedEvent, EnvironmentReconEvent
from envrecon.domain.models import ComponentReconciliation
from envrecon.persistence.db import SessionLocal
from envrecon.persistence.repos import components as components_repo
from envrecon.persistence.repos import environments as environments_repo
from envrecon.persistence.repos import reconciliations as recon_repo


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sum_component_costs(latest_runs: Iterable[ComponentReconciliation | None]) -> float:
    # Unreported or negative estimates contribute nothing.
    total = 0.0
    for run in latest_runs:
        if run is None:
            continue
        cost = run.estimated_cost or 0.0
        if cost > 0:
            total += cost
    return total


async def recompute_environment_cost(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_id: str,
) -> float:
    # Full recompute from each live component's latest run; repeated delivery converges.
    env = await environments_repo.get_environment(session, organization_id, environment_id)
    if env is None:
        raise NotFoundError(f"environment {environment_id} not found")
    rows = await components_repo.list_live_components_with_latest(session, organization_id, environment_id)
    estimated_cost = sum_component_costs(latest for _component, latest in rows)

    if env.latest_env_recon_id is None:
        logger.info("environment_cost_not_written environment_id=%s reason=no_latest_run", environment_id)
        return estimated_cost
    await recon_repo.set_environment_reconciliation_cost(session, env.latest_env_recon_id, estimated_cost)
    logger.debug(
        "environment_cost_recomputed environment_id=%s reconcile_id=%s estimated_cost=%s",
        environment_id,
        env.latest_env_recon_id,
        estimated_cost,
    )
    return estimated_cost


async def on_component_cost_reported(
    event: ComponentCostUpdatedEvent,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> float | None:
    factory = session_factory or SessionLocal
    async with factory() as session:
        env_recon = await recon_repo.get_environment_reconciliation(
            session, event.organization_id, event.environment_reconcile_id
        )
        if env_recon is None:
            logger.warning(
                "cost_event_parent_missing component_reconcile_id=%s environment_reconcile_id=%s",
                event.component_reconcile_id,
                event.environment_reconcile_id,
            )
            return None
        estimated_cost = await recompute_environment_cost(
            session,
            organization_id=event.organization_id,
            environment_id=env_recon.environment_id,
        )
        await session.commit()
    return estimated_cost


async def _stamp_last_reconcile(
    event: EnvironmentReconEvent,
    session_factory: async_sessionmaker[AsyncSession] | None,
) -> None:
    factory = session_factory or SessionLocal
    async with factory() as session:
        env = await environments_repo.get_environment(session, event.organization_id, event.environment_id)
        if env is None:
            logger.warning("environment_event_target_missing environment_id=%s", event.environment_id)
            return
        await environments_repo.stamp_last_reconcile(session, env.id, _utc_now())
        await session.commit()


async def on_environment_cost_recompute_requested(
    event: EnvironmentReconEvent,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    # Emitted by the CD layer after a full run; only the reconcile timestamp moves.
    await _stamp_last_reconcile(event, session_factory)


async def on_environment_update_requested(
    event: EnvironmentReconEvent,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> None:
    await _stamp_last_reconcile(event, session_factory)
