from __future__ import annotations

import pytest
from sqlalchemy import select

from envrecon.domain.models import Component, ComponentReconciliation, EnvironmentReconciliation
from envrecon.domain.status import INITIALIZING, SKIPPED_RECONCILE, WAITING_FOR_PARENT
from envrecon.persistence.db import SessionLocal
from envrecon.services.reconciliation import orchestrator
from envrecon.services.reconciliation.orchestrator import start_environment_run
from envrecon.tests.utils.seed import seed_environment


async def _component_runs(parent_id: int) -> list[ComponentReconciliation]:
    async with SessionLocal() as session:
        result = await session.execute(
            select(ComponentReconciliation).where(ComponentReconciliation.environment_reconciliation_id == parent_id)
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_run_creates_one_waiting_child_per_live_component() -> None:
    seeded = await seed_environment(["network", "database", "cluster", "legacy"], deleted=["legacy"])

    result = await start_environment_run(
        organization_id=seeded.organization.id,
        team_id=seeded.team.id,
        environment_id=seeded.environment.id,
        dag=seeded.environment.dag,
    )

    assert result.reconciliation.status == INITIALIZING
    assert result.reconciliation.git_sha == ""
    assert len(result.components.succeeded) == 3
    assert result.components.failed == []

    children = await _component_runs(result.reconciliation.reconcile_id)
    assert len(children) == 3
    assert {child.status for child in children} == {WAITING_FOR_PARENT}
    legacy_id = seeded.components["legacy"].id
    assert legacy_id not in {child.component_id for child in children}

    async with SessionLocal() as session:
        rows = (await session.execute(select(Component))).scalars().all()
    by_name = {row.name: row for row in rows}
    assert by_name["legacy"].latest_comp_recon_id is None
    child_ids = {child.reconcile_id for child in children}
    assert {by_name[name].latest_comp_recon_id for name in ("network", "database", "cluster")} == child_ids


@pytest.mark.asyncio
async def test_new_run_retires_previous_environment_run_only() -> None:
    seeded = await seed_environment(["network", "database"])
    kwargs = dict(
        organization_id=seeded.organization.id,
        team_id=seeded.team.id,
        environment_id=seeded.environment.id,
        dag=seeded.environment.dag,
    )
    first = await start_environment_run(**kwargs)
    second = await start_environment_run(**kwargs)
    assert second.retired_environment_runs == 1

    async with SessionLocal() as session:
        env_runs = {
            run.reconcile_id: run
            for run in (await session.execute(select(EnvironmentReconciliation))).scalars().all()
        }
    assert env_runs[first.reconciliation.reconcile_id].status == SKIPPED_RECONCILE
    assert env_runs[first.reconciliation.reconcile_id].end_date_time is None
    assert env_runs[second.reconciliation.reconcile_id].status == INITIALIZING

    old_children = await _component_runs(first.reconciliation.reconcile_id)
    new_children = await _component_runs(second.reconciliation.reconcile_id)
    # Component sweeps are per parent, so the retired run keeps its children as they were.
    assert {child.status for child in old_children} == {WAITING_FOR_PARENT}
    assert {child.status for child in new_children} == {WAITING_FOR_PARENT}


@pytest.mark.asyncio
async def test_failing_component_does_not_stop_siblings(monkeypatch) -> None:
    seeded = await seed_environment(["network", "database", "cluster"])
    failing_id = seeded.components["database"].id
    real_open = orchestrator.open_component_run

    async def flaky_open(session, **kwargs):
        if kwargs["component_id"] == failing_id:
            raise RuntimeError("store unavailable")
        return await real_open(session, **kwargs)

    monkeypatch.setattr(orchestrator, "open_component_run", flaky_open)

    result = await start_environment_run(
        organization_id=seeded.organization.id,
        team_id=seeded.team.id,
        environment_id=seeded.environment.id,
        dag=seeded.environment.dag,
    )

    assert result.components.is_partial_failure
    assert len(result.components.succeeded) == 2
    assert [failure.component_name for failure in result.components.failed] == ["database"]
    assert result.components.as_dict()["failed"] == 1

    children = await _component_runs(result.reconciliation.reconcile_id)
    assert failing_id not in {child.component_id for child in children}
    assert len(children) == 2
