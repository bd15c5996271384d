from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.domain.models import Organization, Team


async def get_organization(session: AsyncSession, organization_id: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_team(session: AsyncSession, organization_id: str, team_id: str) -> Team | None:
    # Teams are always resolved inside their organization.
    result = await session.execute(
        select(Team).where(Team.id == team_id, Team.organization_id == organization_id)
    )
    return result.scalar_one_or_none()


async def get_organization_by_name(session: AsyncSession, name: str) -> Organization | None:
    result = await session.execute(select(Organization).where(Organization.name == name))
    return result.scalar_one_or_none()


async def get_team_by_name(session: AsyncSession, organization_id: str, name: str) -> Team | None:
    result = await session.execute(
        select(Team).where(Team.organization_id == organization_id, Team.name == name)
    )
    return result.scalar_one_or_none()


async def ensure_team(session: AsyncSession, *, organization_name: str, team_name: str) -> tuple[Organization, Team]:
    # Idempotent provisioning; caller commits.
    org = await get_organization_by_name(session, organization_name)
    if org is None:
        org = Organization(name=organization_name)
        session.add(org)
        # Flush the organization row before inserting teams to satisfy FK constraints.
        await session.flush()
    team = await get_team_by_name(session, org.id, team_name)
    if team is None:
        team = Team(organization_id=org.id, name=team_name)
        session.add(team)
        await session.flush()
    return org, team
