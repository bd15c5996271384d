from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from envrecon.domain.env_spec import ComponentSpec
from envrecon.domain.models import (
    Component,
    ComponentReconciliation,
    Environment,
    EnvironmentReconciliation,
    Organization,
    Team,
)
from envrecon.persistence.db import SessionLocal
from envrecon.services.diff import save_or_update_environment


BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@dataclass
class Seeded:
    organization: Organization
    team: Team
    environment: Environment
    components: dict[str, Component]


def at(minutes: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minutes)


async def create_org_team(*, org_name: str | None = None, team_name: str = "platform") -> tuple[Organization, Team]:
    async with SessionLocal() as session:
        org = Organization(name=org_name or f"org-{uuid4().hex[:8]}")
        session.add(org)
        await session.flush()
        team = Team(organization_id=org.id, name=team_name)
        session.add(team)
        await session.commit()
    return org, team


async def seed_environment(
    component_names: list[str],
    *,
    env_name: str = "dev",
    deleted: list[str] | None = None,
) -> Seeded:
    # Submit a spec through the diff service, then soft-delete the requested names directly.
    org, team = await create_org_team()
    async with SessionLocal() as session:
        result = await save_or_update_environment(
            session,
            organization=org,
            team=team,
            env_name=env_name,
            components=[ComponentSpec(name=name) for name in component_names],
        )
        components = {component.name: component for component in result.created_components}
        for name in deleted or []:
            components[name].is_deleted = True
        await session.commit()
    return Seeded(organization=org, team=team, environment=result.environment, components=components)


async def add_environment_run(
    seeded: Seeded,
    *,
    status: str,
    start: datetime,
    end: datetime | None = None,
    estimated_cost: float = 0.0,
    set_latest: bool = False,
) -> EnvironmentReconciliation:
    async with SessionLocal() as session:
        recon = EnvironmentReconciliation(
            organization_id=seeded.organization.id,
            team_id=seeded.team.id,
            environment_id=seeded.environment.id,
            status=status,
            dag=list(seeded.environment.dag or []),
            start_date_time=start,
            end_date_time=end,
            git_sha="",
            estimated_cost=estimated_cost,
        )
        session.add(recon)
        await session.flush()
        if set_latest:
            env = await session.get(Environment, seeded.environment.id)
            env.latest_env_recon_id = recon.reconcile_id
        await session.commit()
    return recon


async def add_component_run(
    seeded: Seeded,
    component_name: str,
    *,
    parent: EnvironmentReconciliation,
    status: str,
    start: datetime,
    end: datetime | None = None,
    estimated_cost: float = 0.0,
    is_skipped: bool | None = None,
    set_latest: bool = False,
) -> ComponentReconciliation:
    component = seeded.components[component_name]
    async with SessionLocal() as session:
        recon = ComponentReconciliation(
            organization_id=seeded.organization.id,
            environment_reconciliation_id=parent.reconcile_id,
            component_id=component.id,
            status=status,
            start_date_time=start,
            end_date_time=end,
            estimated_cost=estimated_cost,
            is_skipped=is_skipped,
        )
        session.add(recon)
        await session.flush()
        if set_latest:
            row = await session.get(Component, component.id)
            row.latest_comp_recon_id = recon.reconcile_id
        await session.commit()
    return recon
