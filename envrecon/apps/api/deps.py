from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.domain.models import Component, Environment, Organization, Team
from envrecon.persistence.db import session_scope
from envrecon.persistence.repos import components as components_repo
from envrecon.persistence.repos import environments as environments_repo
from envrecon.persistence.repos import organizations as organizations_repo
from envrecon.services.cd_trigger import CdTrigger, get_cd_trigger
from envrecon.services.object_storage import ObjectStore, get_object_store


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with session_scope() as session:
        yield session


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": message})


async def get_organization(org_id: str, db: AsyncSession = Depends(get_db)) -> Organization:
    try:
        org = await organizations_repo.get_organization(db, org_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading organization") from exc
    if org is None:
        raise _not_found("organization not found")
    return org


async def get_team(
    team_id: str,
    org: Organization = Depends(get_organization),
    db: AsyncSession = Depends(get_db),
) -> Team:
    try:
        team = await organizations_repo.get_team(db, org.id, team_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading team") from exc
    if team is None:
        raise _not_found("team not found")
    return team


async def get_environment(
    environment_id: str,
    team: Team = Depends(get_team),
    db: AsyncSession = Depends(get_db),
) -> Environment:
    try:
        env = await environments_repo.get_environment(db, team.organization_id, environment_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading environment") from exc
    # Soft-deleted environments are hidden from every route.
    if env is None or env.team_id != team.id or env.is_deleted:
        raise _not_found("environment not found")
    return env


async def get_component(
    component_id: str,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> Component:
    try:
        component = await components_repo.get_component(db, env.organization_id, component_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading component") from exc
    if component is None or component.environment_id != env.id:
        raise _not_found("component not found")
    return component


def cd_auth_header(
    x_argocd_authorization: str | None = Header(default=None, alias="X-ArgoCD-Authorization"),
) -> str | None:
    # A caller-supplied CD bearer header is forwarded as-is.
    return x_argocd_authorization or None


def get_cd_trigger_dep() -> CdTrigger:
    return get_cd_trigger()


def get_object_store_dep() -> ObjectStore:
    return get_object_store()
