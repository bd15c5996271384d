from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.core.errors import NotFoundError
from envrecon.domain.events import (
    COMPONENT_COST_UPDATED,
    ENV_RECON_COST_UPDATE_REQUESTED,
    ENV_RECON_ENV_UPDATE_REQUESTED,
    ComponentCostUpdatedEvent,
    EnvironmentReconEvent,
)
from envrecon.domain.models import ComponentReconciliation, Environment, EnvironmentReconciliation
from envrecon.domain.status import INITIALIZING, SkipState
from envrecon.persistence.guards import raise_store_error
from envrecon.persistence.repos import components as components_repo
from envrecon.persistence.repos import reconciliations as recon_repo
from envrecon.services.events.bus import publish_event
from envrecon.services.reconciliation.orchestrator import open_component_run


logger = logging.getLogger(__name__)


class EnvironmentReconciliationUpdate(BaseModel):
    status: str | None = None
    end_date_time: datetime | None = None
    error_message: str | None = None
    git_sha: str | None = None
    estimated_cost: float | None = None


class ComponentReconciliationUpdate(BaseModel):
    status: str | None = None
    end_date_time: datetime | None = None
    estimated_cost: float | None = None
    skip_state: SkipState | None = None


class ErrorEnvironmentReconciliation(BaseModel):
    # An attempt that failed before any component ran, e.g. validation_failed.
    status: str = Field(min_length=1)
    start_date_time: datetime
    end_date_time: datetime
    error_message: str | None = None
    estimated_cost: float = 0.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _explicit_values(changes: BaseModel, *, nullable: set[str]) -> dict[str, Any]:
    # Fields the caller sent; explicit nulls only clear columns that allow them.
    return {
        key: value
        for key, value in changes.model_dump(exclude_unset=True).items()
        if value is not None or key in nullable
    }


async def _commit(session: AsyncSession, *, operation: str, **scope: object) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(exc, operation=operation, **scope)


async def update_environment_reconciliation(
    session: AsyncSession,
    *,
    organization_id: str,
    reconcile_id: int,
    changes: EnvironmentReconciliationUpdate,
) -> EnvironmentReconciliation:
    recon = await recon_repo.get_environment_reconciliation(session, organization_id, reconcile_id)
    if recon is None:
        raise NotFoundError(f"environment reconciliation {reconcile_id} not found")
    values: dict[str, Any] = _explicit_values(changes, nullable={"end_date_time", "error_message", "git_sha"})
    was_open = recon.end_date_time is None
    recon = await recon_repo.merge_environment_reconciliation(session, recon, **values)
    await _commit(session, operation="update_environment_reconciliation", reconcile_id=reconcile_id)

    event = EnvironmentReconEvent(
        organization_id=organization_id,
        environment_reconcile_id=recon.reconcile_id,
        environment_id=recon.environment_id,
    )
    # Publish only after commit so handlers read the written state.
    if "estimated_cost" in values:
        await publish_event(ENV_RECON_COST_UPDATE_REQUESTED, event)
    if was_open and recon.end_date_time is not None:
        await publish_event(ENV_RECON_ENV_UPDATE_REQUESTED, event)
    return recon


async def create_error_environment_reconciliation(
    session: AsyncSession,
    *,
    environment: Environment,
    record: ErrorEnvironmentReconciliation,
) -> EnvironmentReconciliation:
    recon = await recon_repo.create_environment_reconciliation(
        session,
        organization_id=environment.organization_id,
        team_id=environment.team_id,
        environment_id=environment.id,
        dag=list(environment.dag or []),
        start_date_time=record.start_date_time,
        status=record.status,
        end_date_time=record.end_date_time,
        error_message=record.error_message,
        estimated_cost=record.estimated_cost,
    )
    await _commit(session, operation="create_error_environment_reconciliation", environment_id=environment.id)
    logger.info(
        "error_environment_run_recorded environment_id=%s reconcile_id=%s status=%s",
        environment.id,
        recon.reconcile_id,
        recon.status,
    )
    return recon


async def start_component_run(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_reconcile_id: int,
    component_id: str,
    status: str | None = None,
    start_date_time: datetime | None = None,
) -> ComponentReconciliation:
    # Used by the CD layer when a component actually starts work under a parent run.
    env_recon = await recon_repo.get_environment_reconciliation(session, organization_id, environment_reconcile_id)
    if env_recon is None:
        raise NotFoundError(f"environment reconciliation {environment_reconcile_id} not found")
    component = await components_repo.get_component(session, organization_id, component_id)
    if component is None or component.environment_id != env_recon.environment_id:
        raise NotFoundError(f"component {component_id} not found")
    try:
        recon = await open_component_run(
            session,
            organization_id=organization_id,
            environment_reconcile_id=environment_reconcile_id,
            component_id=component_id,
            status=status or INITIALIZING,
            start_date_time=start_date_time or _utc_now(),
        )
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(exc, operation="start_component_run", component_id=component_id)
    await _commit(session, operation="start_component_run", component_id=component_id)
    return recon


async def update_component_reconciliation(
    session: AsyncSession,
    *,
    organization_id: str,
    reconcile_id: int,
    changes: ComponentReconciliationUpdate,
) -> ComponentReconciliation:
    recon = await recon_repo.get_component_reconciliation(session, organization_id, reconcile_id)
    if recon is None:
        raise NotFoundError(f"component reconciliation {reconcile_id} not found")
    values: dict[str, Any] = _explicit_values(changes, nullable={"end_date_time"})
    skip_state = values.pop("skip_state", None)
    if skip_state is not None:
        values["is_skipped"] = SkipState(skip_state).to_column()
    recon = await recon_repo.merge_component_reconciliation(session, recon, **values)
    await _commit(session, operation="update_component_reconciliation", reconcile_id=reconcile_id)

    # Published on every report, including an unchanged value.
    if "estimated_cost" in values:
        await publish_event(
            COMPONENT_COST_UPDATED,
            ComponentCostUpdatedEvent(
                organization_id=organization_id,
                component_reconcile_id=recon.reconcile_id,
                environment_reconcile_id=recon.environment_reconciliation_id,
            ),
        )
    return recon
