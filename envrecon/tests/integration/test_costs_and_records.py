from __future__ import annotations

import pytest

from envrecon.core.errors import NotFoundError
from envrecon.domain.events import COMPONENT_COST_UPDATED, ComponentCostUpdatedEvent
from envrecon.domain.models import Environment, EnvironmentReconciliation
from envrecon.domain.status import VALIDATION_FAILED
from envrecon.persistence.db import SessionLocal
from envrecon.services.events.bus import subscribe, unsubscribe
from envrecon.services.reconciliation.costs import recompute_environment_cost
from envrecon.services.reconciliation.records import (
    ComponentReconciliationUpdate,
    EnvironmentReconciliationUpdate,
    ErrorEnvironmentReconciliation,
    create_error_environment_reconciliation,
    update_component_reconciliation,
    update_environment_reconciliation,
)
from envrecon.tests.utils.seed import add_component_run, add_environment_run, at, seed_environment


async def _env_run(reconcile_id: int) -> EnvironmentReconciliation:
    async with SessionLocal() as session:
        return await session.get(EnvironmentReconciliation, reconcile_id)


async def _environment(environment_id: str) -> Environment:
    async with SessionLocal() as session:
        return await session.get(Environment, environment_id)


@pytest.mark.asyncio
async def test_recompute_sums_positive_latest_costs_and_is_idempotent() -> None:
    seeded = await seed_environment(["a", "b", "c", "d", "retired"], deleted=["retired"])
    parent = await add_environment_run(seeded, status="running", start=at(0), set_latest=True)
    for name, cost in (("a", 10.0), ("b", -5.0), ("c", 0.0), ("d", 7.5), ("retired", 100.0)):
        await add_component_run(
            seeded, name, parent=parent, status="succeeded", start=at(1), estimated_cost=cost, set_latest=True
        )

    async with SessionLocal() as session:
        first = await recompute_environment_cost(
            session, organization_id=seeded.organization.id, environment_id=seeded.environment.id
        )
        await session.commit()
        second = await recompute_environment_cost(
            session, organization_id=seeded.organization.id, environment_id=seeded.environment.id
        )
        await session.commit()

    assert first == 17.5
    assert second == 17.5
    assert (await _env_run(parent.reconcile_id)).estimated_cost == 17.5


@pytest.mark.asyncio
async def test_recompute_without_latest_run_writes_nothing() -> None:
    seeded = await seed_environment(["a"])
    orphan = await add_environment_run(seeded, status="running", start=at(0), estimated_cost=3.0)
    await add_component_run(seeded, "a", parent=orphan, status="succeeded", start=at(1), estimated_cost=9.0, set_latest=True)

    async with SessionLocal() as session:
        value = await recompute_environment_cost(
            session, organization_id=seeded.organization.id, environment_id=seeded.environment.id
        )
        await session.commit()

    assert value == 9.0
    assert (await _env_run(orphan.reconcile_id)).estimated_cost == 3.0


@pytest.mark.asyncio
async def test_recompute_for_unknown_environment_is_not_found() -> None:
    seeded = await seed_environment(["a"])
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await recompute_environment_cost(
                session, organization_id=seeded.organization.id, environment_id="missing"
            )


@pytest.mark.asyncio
async def test_component_cost_report_rolls_up_to_latest_environment_run() -> None:
    seeded = await seed_environment(["a", "b"])
    parent = await add_environment_run(seeded, status="running", start=at(0), set_latest=True)
    run_a = await add_component_run(seeded, "a", parent=parent, status="running", start=at(1), set_latest=True)
    await add_component_run(
        seeded, "b", parent=parent, status="succeeded", start=at(1), estimated_cost=4.0, set_latest=True
    )

    async with SessionLocal() as session:
        updated = await update_component_reconciliation(
            session,
            organization_id=seeded.organization.id,
            reconcile_id=run_a.reconcile_id,
            changes=ComponentReconciliationUpdate(status="succeeded", estimated_cost=6.5, end_date_time=at(5)),
        )

    assert updated.status == "succeeded"
    assert (await _env_run(parent.reconcile_id)).estimated_cost == 10.5


@pytest.mark.asyncio
async def test_repeated_identical_cost_report_republishes_and_heals_stale_total() -> None:
    seeded = await seed_environment(["a"])
    parent = await add_environment_run(seeded, status="running", start=at(0), set_latest=True)
    # Stored cost already matches the report, but the environment total never caught up.
    run_a = await add_component_run(
        seeded, "a", parent=parent, status="running", start=at(1), estimated_cost=5.0, set_latest=True
    )
    assert (await _env_run(parent.reconcile_id)).estimated_cost == 0.0

    received: list[ComponentCostUpdatedEvent] = []

    async def capture(event: ComponentCostUpdatedEvent) -> None:
        received.append(event)

    subscribe(COMPONENT_COST_UPDATED, capture)
    try:
        for _ in range(2):
            async with SessionLocal() as session:
                await update_component_reconciliation(
                    session,
                    organization_id=seeded.organization.id,
                    reconcile_id=run_a.reconcile_id,
                    changes=ComponentReconciliationUpdate(estimated_cost=5.0),
                )
    finally:
        unsubscribe(COMPONENT_COST_UPDATED, capture)

    assert [event.component_reconcile_id for event in received] == [run_a.reconcile_id] * 2
    assert (await _env_run(parent.reconcile_id)).estimated_cost == 5.0


@pytest.mark.asyncio
async def test_closing_environment_run_stamps_last_reconcile_time() -> None:
    seeded = await seed_environment(["a"])
    parent = await add_environment_run(seeded, status="running", start=at(0), set_latest=True)
    assert (await _environment(seeded.environment.id)).last_reconcile_datetime is None

    async with SessionLocal() as session:
        recon = await update_environment_reconciliation(
            session,
            organization_id=seeded.organization.id,
            reconcile_id=parent.reconcile_id,
            changes=EnvironmentReconciliationUpdate(status="succeeded", end_date_time=at(30)),
        )

    assert recon.status == "succeeded"
    assert (await _environment(seeded.environment.id)).last_reconcile_datetime is not None


@pytest.mark.asyncio
async def test_partial_update_leaves_unsent_fields_alone() -> None:
    seeded = await seed_environment(["a"])
    parent = await add_environment_run(seeded, status="running", start=at(0), estimated_cost=2.0)

    async with SessionLocal() as session:
        await update_environment_reconciliation(
            session,
            organization_id=seeded.organization.id,
            reconcile_id=parent.reconcile_id,
            changes=EnvironmentReconciliationUpdate.model_validate({"git_sha": "abc123", "estimated_cost": None}),
        )

    stored = await _env_run(parent.reconcile_id)
    assert stored.git_sha == "abc123"
    assert stored.status == "running"
    assert stored.estimated_cost == 2.0


@pytest.mark.asyncio
async def test_update_of_unknown_run_is_not_found() -> None:
    seeded = await seed_environment(["a"])
    async with SessionLocal() as session:
        with pytest.raises(NotFoundError):
            await update_component_reconciliation(
                session,
                organization_id=seeded.organization.id,
                reconcile_id=999,
                changes=ComponentReconciliationUpdate(status="failed"),
            )


@pytest.mark.asyncio
async def test_error_run_is_recorded_already_closed() -> None:
    seeded = await seed_environment(["a"])
    async with SessionLocal() as session:
        env = await session.get(Environment, seeded.environment.id)
        recon = await create_error_environment_reconciliation(
            session,
            environment=env,
            record=ErrorEnvironmentReconciliation(
                status=VALIDATION_FAILED,
                start_date_time=at(0),
                end_date_time=at(1),
                error_message="component a: missing module",
            ),
        )

    stored = await _env_run(recon.reconcile_id)
    assert stored.status == VALIDATION_FAILED
    assert stored.end_date_time is not None
    assert stored.error_message == "component a: missing module"
    assert stored.dag == [{"name": "a"}]
