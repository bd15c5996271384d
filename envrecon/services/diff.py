from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.domain.env_spec import ComponentSpec, dag_from_specs
from envrecon.domain.models import Component, Environment, Organization, Team
from envrecon.persistence.repos import components as components_repo
from envrecon.persistence.repos import environments as environments_repo


logger = logging.getLogger(__name__)


class NamedComponent(Protocol):
    name: str


@dataclass(frozen=True)
class DiffPlan:
    merged_dag: list[ComponentSpec]
    to_create: list[ComponentSpec]
    to_delete: list[Any]

    @property
    def is_noop(self) -> bool:
        return not self.to_create and not self.to_delete


@dataclass(frozen=True)
class SpecUpdateResult:
    environment: Environment
    plan: DiffPlan
    created: bool
    created_components: list[Component] = field(default_factory=list)
    deleted_count: int = 0


def plan_components(
    current: Sequence[NamedComponent],
    incoming: Sequence[ComponentSpec],
) -> DiffPlan:
    # Known components keep their stored order; only additions and removals change it.
    current_names = {component.name for component in current}
    incoming_by_name: dict[str, ComponentSpec] = {}
    for spec in incoming:
        incoming_by_name.setdefault(spec.name, spec)

    to_create = [spec for spec in incoming if spec.name not in current_names]
    existing: list[ComponentSpec] = []
    to_delete: list[Any] = []
    for component in current:
        found = incoming_by_name.get(component.name)
        if found is None:
            to_delete.append(component)
            continue
        existing.append(found)

    return DiffPlan(merged_dag=existing + to_create, to_create=to_create, to_delete=to_delete)


def order_by_dag(components: Sequence[Component], dag: list[dict[str, Any]] | None) -> list[Component]:
    # The stored dag is the authoritative order; rows missing from it keep creation order after it.
    positions: dict[str, int] = {}
    for index, entry in enumerate(dag or []):
        name = entry.get("name") if isinstance(entry, dict) else None
        if name is not None:
            positions.setdefault(name, index)
    fallback = len(positions)
    indexed = list(enumerate(components))
    indexed.sort(key=lambda item: (positions.get(item[1].name, fallback), item[0]))
    return [component for _, component in indexed]


async def save_or_update_environment(
    session: AsyncSession,
    *,
    organization: Organization,
    team: Team,
    env_name: str,
    components: Sequence[ComponentSpec],
) -> SpecUpdateResult:
    env = await environments_repo.find_by_name(session, organization.id, team.id, env_name)
    if env is None:
        return await create_environment(
            session, organization=organization, team=team, env_name=env_name, components=components
        )

    current = order_by_dag(
        await components_repo.list_live_components(session, organization.id, env.id), env.dag
    )
    plan = plan_components(current, components)

    env = await environments_repo.merge_and_save(session, env, dag=dag_from_specs(plan.merged_dag))
    created = await components_repo.batch_create(
        session,
        organization_id=organization.id,
        environment_id=env.id,
        names=[spec.name for spec in plan.to_create],
    )
    deleted = await components_repo.batch_soft_delete(
        session,
        organization_id=organization.id,
        environment_id=env.id,
        components=plan.to_delete,
    )
    logger.info(
        "environment_spec_applied environment_id=%s created=%s deleted=%s",
        env.id,
        len(created),
        deleted,
    )
    return SpecUpdateResult(
        environment=env,
        plan=plan,
        created=False,
        created_components=created,
        deleted_count=deleted,
    )


async def create_environment(
    session: AsyncSession,
    *,
    organization: Organization,
    team: Team,
    env_name: str,
    components: Sequence[ComponentSpec],
) -> SpecUpdateResult:
    # A first submission is a plan against an empty component set.
    plan = plan_components([], components)
    env = await environments_repo.create_environment(
        session,
        organization_id=organization.id,
        team_id=team.id,
        name=env_name,
        dag=dag_from_specs(plan.merged_dag),
    )
    logger.info("environment_created environment_id=%s name=%s", env.id, env_name)
    created = await components_repo.batch_create(
        session,
        organization_id=organization.id,
        environment_id=env.id,
        names=[spec.name for spec in plan.to_create],
    )
    if created:
        logger.info("components_created environment_id=%s count=%s", env.id, len(created))
    return SpecUpdateResult(environment=env, plan=plan, created=True, created_components=created)
