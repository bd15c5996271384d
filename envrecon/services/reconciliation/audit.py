from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.domain.models import ComponentReconciliation, EnvironmentReconciliation
from envrecon.domain.status import SkipState
from envrecon.persistence.repos import reconciliations as recon_repo


class ComponentAuditEntry(BaseModel):
    reconcile_id: int
    environment_reconcile_id: int
    component_id: str
    status: str
    start_date_time: datetime
    end_date_time: datetime | None
    estimated_cost: float
    skip_state: SkipState


class EnvironmentAuditEntry(BaseModel):
    # Omits the dag snapshot; fetch a single run for the full payload.
    reconcile_id: int
    environment_id: str
    status: str
    start_date_time: datetime
    end_date_time: datetime | None
    estimated_cost: float
    error_message: str | None
    git_sha: str | None


def to_component_audit_entry(recon: ComponentReconciliation) -> ComponentAuditEntry:
    return ComponentAuditEntry(
        reconcile_id=recon.reconcile_id,
        environment_reconcile_id=recon.environment_reconciliation_id,
        component_id=recon.component_id,
        status=recon.status,
        start_date_time=recon.start_date_time,
        end_date_time=recon.end_date_time,
        estimated_cost=recon.estimated_cost or 0.0,
        skip_state=recon.skip_state,
    )


def to_environment_audit_entry(recon: EnvironmentReconciliation) -> EnvironmentAuditEntry:
    return EnvironmentAuditEntry(
        reconcile_id=recon.reconcile_id,
        environment_id=recon.environment_id,
        status=recon.status,
        start_date_time=recon.start_date_time,
        end_date_time=recon.end_date_time,
        estimated_cost=recon.estimated_cost or 0.0,
        error_message=recon.error_message,
        git_sha=recon.git_sha or None,
    )


async def latest_meaningful_component_run(
    session: AsyncSession, *, organization_id: str, component_id: str
) -> ComponentReconciliation | None:
    return await recon_repo.get_latest_meaningful_component_reconciliation(
        session, organization_id, component_id
    )


async def latest_non_validation_failure(
    session: AsyncSession, *, organization_id: str, environment_id: str
) -> EnvironmentReconciliation | None:
    return await recon_repo.get_latest_non_validation_failure(session, organization_id, environment_id)


async def batch_latest_component_runs(
    session: AsyncSession, *, organization_id: str, component_ids: Sequence[str]
) -> dict[str, ComponentReconciliation]:
    runs = await recon_repo.get_latest_component_reconciliations(session, organization_id, component_ids)
    return {run.component_id: run for run in runs}


async def component_audit_list(
    session: AsyncSession, *, organization_id: str, component_id: str
) -> list[ComponentAuditEntry]:
    runs = await recon_repo.list_component_reconciliations(session, organization_id, component_id)
    return [to_component_audit_entry(run) for run in runs]


async def environment_audit_list(
    session: AsyncSession, *, organization_id: str, environment_id: str
) -> list[EnvironmentAuditEntry]:
    runs = await recon_repo.list_environment_reconciliations(session, organization_id, environment_id)
    return [to_environment_audit_entry(run) for run in runs]
