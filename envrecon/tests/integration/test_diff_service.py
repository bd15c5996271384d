from __future__ import annotations

import pytest
from sqlalchemy import select

from envrecon.core.errors import ConflictError
from envrecon.domain.env_spec import ComponentSpec
from envrecon.domain.models import Component, Environment
from envrecon.persistence.db import SessionLocal
from envrecon.persistence.repos import components as components_repo
from envrecon.services.diff import create_environment, save_or_update_environment
from envrecon.tests.utils.seed import create_org_team


def _specs(*names: str) -> list[ComponentSpec]:
    return [ComponentSpec(name=name) for name in names]


async def _components(environment_id: str) -> dict[str, bool]:
    async with SessionLocal() as session:
        rows = (
            await session.execute(select(Component).where(Component.environment_id == environment_id))
        ).scalars().all()
    return {f"{row.name}:{row.id}": row.is_deleted for row in rows}


@pytest.mark.asyncio
async def test_first_submission_creates_environment_and_components() -> None:
    org, team = await create_org_team()
    async with SessionLocal() as session:
        result = await save_or_update_environment(
            session, organization=org, team=team, env_name="dev", components=_specs("b", "a")
        )
        await session.commit()

    assert result.created
    assert [component.name for component in result.created_components] == ["b", "a"]
    assert result.environment.dag == [{"name": "b"}, {"name": "a"}]


@pytest.mark.asyncio
async def test_resubmission_applies_diff_in_stored_order() -> None:
    org, team = await create_org_team()
    async with SessionLocal() as session:
        first = await save_or_update_environment(
            session, organization=org, team=team, env_name="dev", components=_specs("b", "a")
        )
        await session.commit()

    async with SessionLocal() as session:
        second = await save_or_update_environment(
            session, organization=org, team=team, env_name="dev", components=_specs("a", "c")
        )
        await session.commit()

    assert not second.created
    assert second.environment.id == first.environment.id
    assert [spec.name for spec in second.plan.to_create] == ["c"]
    assert second.deleted_count == 1

    async with SessionLocal() as session:
        env = await session.get(Environment, first.environment.id)
    assert env.dag == [{"name": "a"}, {"name": "c"}]

    states = await _components(first.environment.id)
    live = sorted(key.split(":")[0] for key, deleted in states.items() if not deleted)
    removed = sorted(key.split(":")[0] for key, deleted in states.items() if deleted)
    assert live == ["a", "c"]
    assert removed == ["b"]


@pytest.mark.asyncio
async def test_identical_resubmission_is_a_noop() -> None:
    org, team = await create_org_team()
    for _ in range(2):
        async with SessionLocal() as session:
            result = await save_or_update_environment(
                session, organization=org, team=team, env_name="dev", components=_specs("a", "b")
            )
            await session.commit()
    assert result.plan.is_noop
    assert result.created_components == []
    assert result.deleted_count == 0


@pytest.mark.asyncio
async def test_removed_component_name_can_return() -> None:
    org, team = await create_org_team()
    for names in (("a", "b"), ("a",), ("a", "b")):
        async with SessionLocal() as session:
            result = await save_or_update_environment(
                session, organization=org, team=team, env_name="dev", components=_specs(*names)
            )
            await session.commit()

    states = await _components(result.environment.id)
    b_rows = [deleted for key, deleted in states.items() if key.startswith("b:")]
    assert sorted(b_rows) == [False, True]


@pytest.mark.asyncio
async def test_live_components_list_in_insertion_order_across_batches() -> None:
    org, team = await create_org_team()
    for names in (("z", "y", "x", "w"), ("z", "y", "x", "w", "b")):
        async with SessionLocal() as session:
            result = await save_or_update_environment(
                session, organization=org, team=team, env_name="dev", components=_specs(*names)
            )
            await session.commit()

    async with SessionLocal() as session:
        live = await components_repo.list_live_components(session, org.id, result.environment.id)
    assert [component.name for component in live] == ["z", "y", "x", "w", "b"]
    assert [component.position for component in live] == [1, 2, 3, 4, 5]


@pytest.mark.asyncio
async def test_duplicate_environment_creation_is_a_conflict() -> None:
    org, team = await create_org_team()
    async with SessionLocal() as session:
        await create_environment(session, organization=org, team=team, env_name="dev", components=_specs("a"))
        await session.commit()

    async with SessionLocal() as session:
        with pytest.raises(ConflictError):
            await create_environment(
                session, organization=org, team=team, env_name="dev", components=_specs("a")
            )
