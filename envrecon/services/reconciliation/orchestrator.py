from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from envrecon.domain.models import (
    Component,
    ComponentReconciliation,
    Environment,
    EnvironmentReconciliation,
    Organization,
    Team,
)
from envrecon.domain.status import WAITING_FOR_PARENT
from envrecon.persistence.db import SessionLocal
from envrecon.persistence.guards import raise_store_error
from envrecon.persistence.repos import components as components_repo
from envrecon.persistence.repos import environments as environments_repo
from envrecon.persistence.repos import reconciliations as recon_repo
from envrecon.services.cd_trigger import CdTrigger
from envrecon.services.reconciliation.sweeper import sweep_component, sweep_environment


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentRunFailure:
    component_id: str
    component_name: str
    error: str


@dataclass
class BatchOutcome:
    # Settle-all report for a fan-out: created reconcile ids plus per-item failures.
    succeeded: list[int] = field(default_factory=list)
    failed: list[ComponentRunFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def is_partial_failure(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)

    def as_dict(self) -> dict[str, Any]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "failures": [
                {"component_id": item.component_id, "component_name": item.component_name, "error": item.error}
                for item in self.failed
            ],
        }


@dataclass(frozen=True)
class EnvironmentRunResult:
    reconciliation: EnvironmentReconciliation
    components: BatchOutcome
    retired_environment_runs: int = 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def open_component_run(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_reconcile_id: int,
    component_id: str,
    status: str = WAITING_FOR_PARENT,
    start_date_time: datetime | None = None,
) -> ComponentReconciliation:
    # Create the run, retire what it supersedes, then repoint the component; caller commits.
    recon = await recon_repo.create_component_reconciliation(
        session,
        organization_id=organization_id,
        environment_reconciliation_id=environment_reconcile_id,
        component_id=component_id,
        status=status,
        start_date_time=start_date_time or _utc_now(),
    )
    await sweep_component(
        session,
        organization_id=organization_id,
        environment_reconcile_id=environment_reconcile_id,
        component_id=component_id,
        keep_reconcile_ids=[recon.reconcile_id],
    )
    await components_repo.set_latest_reconciliation(session, component_id, recon.reconcile_id)
    return recon


async def _start_component_run(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    organization_id: str,
    environment_reconcile_id: int,
    component: Component,
    started_at: datetime,
) -> int:
    # One session per component so a failing sibling cannot poison the others.
    async with session_factory() as session:
        try:
            recon = await open_component_run(
                session,
                organization_id=organization_id,
                environment_reconcile_id=environment_reconcile_id,
                component_id=component.id,
                start_date_time=started_at,
            )
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return recon.reconcile_id


async def start_environment_run(
    *,
    organization_id: str,
    team_id: str,
    environment_id: str,
    dag: list[dict[str, Any]],
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> EnvironmentRunResult:
    factory = session_factory or SessionLocal
    started_at = _utc_now()

    # The parent run is committed before any child so every child can reference it.
    async with factory() as session:
        recon = await recon_repo.create_environment_reconciliation(
            session,
            organization_id=organization_id,
            team_id=team_id,
            environment_id=environment_id,
            dag=dag,
            start_date_time=started_at,
        )
        retired = await sweep_environment(
            session,
            organization_id=organization_id,
            team_id=team_id,
            environment_id=environment_id,
            keep_reconcile_ids=[recon.reconcile_id],
        )
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            raise_store_error(exc, operation="start_environment_run", environment_id=environment_id)
        live_components = await components_repo.list_live_components(
            session, organization_id, environment_id
        )

    logger.info(
        "environment_run_started environment_id=%s reconcile_id=%s components=%s",
        environment_id,
        recon.reconcile_id,
        len(live_components),
    )

    results = await asyncio.gather(
        *(
            _start_component_run(
                factory,
                organization_id=organization_id,
                environment_reconcile_id=recon.reconcile_id,
                component=component,
                started_at=started_at,
            )
            for component in live_components
        ),
        return_exceptions=True,
    )

    outcome = BatchOutcome()
    for component, result in zip(live_components, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            logger.error(
                "component_run_create_failed environment_id=%s reconcile_id=%s component_id=%s",
                environment_id,
                recon.reconcile_id,
                component.id,
                exc_info=result,
            )
            outcome.failed.append(
                ComponentRunFailure(
                    component_id=component.id,
                    component_name=component.name,
                    error=result.__class__.__name__,
                )
            )
            continue
        outcome.succeeded.append(result)

    if outcome.failed:
        logger.warning(
            "environment_run_partial_failure reconcile_id=%s succeeded=%s failed=%s",
            recon.reconcile_id,
            len(outcome.succeeded),
            len(outcome.failed),
        )
    return EnvironmentRunResult(reconciliation=recon, components=outcome, retired_environment_runs=retired)


async def request_reconcile(
    session: AsyncSession,
    *,
    organization: Organization,
    team: Team,
    environment: Environment,
    cd_trigger: CdTrigger,
    auth_header: str | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> EnvironmentRunResult:
    # Open a run from the stored dag, point the environment at it, then hand off to CD.
    result = await start_environment_run(
        organization_id=organization.id,
        team_id=team.id,
        environment_id=environment.id,
        dag=list(environment.dag or []),
        session_factory=session_factory,
    )
    await environments_repo.merge_and_save(
        session, environment, latest_env_recon_id=result.reconciliation.reconcile_id
    )
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise_store_error(exc, operation="set_latest_environment_run", environment_id=environment.id)

    await cd_trigger.reconcile(
        organization.name,
        f"{team.name}-{environment.name}",
        auth_header=auth_header,
    )
    return result
