from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.apps.api.deps import (
    cd_auth_header,
    get_cd_trigger_dep,
    get_db,
    get_environment,
    get_organization,
    get_team,
)
from envrecon.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from envrecon.apps.api.response import SuccessEnvelope, success_response
from envrecon.domain.env_spec import ComponentSpec
from envrecon.domain.models import Environment, Organization, Team
from envrecon.persistence.guards import raise_store_error
from envrecon.persistence.repos import environments as environments_repo
from envrecon.persistence.repos import reconciliations as recon_repo
from envrecon.services.cd_trigger import CdTrigger
from envrecon.services.diff import save_or_update_environment
from envrecon.services.reconciliation.audit import EnvironmentAuditEntry, environment_audit_list
from envrecon.services.reconciliation.orchestrator import request_reconcile


router = APIRouter(
    prefix="/orgs/{org_id}/teams/{team_id}/environments",
    tags=["environments"],
    responses=DEFAULT_ERROR_RESPONSES,
)


class EnvironmentSpecRequest(BaseModel):
    env_name: str = Field(min_length=1)
    components: list[ComponentSpec]


class EnvironmentUpdateRequest(BaseModel):
    is_reconcile: bool = False

    model_config = {"extra": "forbid"}


class EnvironmentResponse(BaseModel):
    id: str
    organization_id: str
    team_id: str
    name: str
    dag: list[dict[str, Any]]
    is_deleted: bool
    latest_env_recon_id: int | None
    last_reconcile_datetime: datetime | None
    created_at: datetime | None
    updated_at: datetime | None


class ReconcileResponse(BaseModel):
    environment: EnvironmentResponse
    reconcile_id: int
    components: dict[str, Any]


def _to_response(env: Environment) -> EnvironmentResponse:
    return EnvironmentResponse(
        id=env.id,
        organization_id=env.organization_id,
        team_id=env.team_id,
        name=env.name,
        dag=list(env.dag or []),
        is_deleted=env.is_deleted,
        latest_env_recon_id=env.latest_env_recon_id,
        last_reconcile_datetime=env.last_reconcile_datetime,
        created_at=env.created_at,
        updated_at=env.updated_at,
    )


async def _commit(db: AsyncSession, *, operation: str, **scope: object) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise_store_error(exc, operation=operation, **scope)


@router.post("", response_model=SuccessEnvelope[EnvironmentResponse])
async def submit_environment_spec(
    request: Request,
    payload: EnvironmentSpecRequest,
    org: Organization = Depends(get_organization),
    team: Team = Depends(get_team),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Creates the environment on first submission, otherwise applies the component diff.
    result = await save_or_update_environment(
        db,
        organization=org,
        team=team,
        env_name=payload.env_name,
        components=payload.components,
    )
    await _commit(db, operation="submit_environment_spec", environment=payload.env_name)
    await db.refresh(result.environment)
    return success_response(request=request, data=jsonable_encoder(_to_response(result.environment)))


@router.get("", response_model=SuccessEnvelope[list[EnvironmentResponse]])
async def list_environments(
    request: Request,
    team: Team = Depends(get_team),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        envs = await environments_repo.list_environments(db, team.organization_id, team.id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing environments") from exc
    return success_response(request=request, data=jsonable_encoder([_to_response(env) for env in envs]))


@router.get("/{environment_id}", response_model=SuccessEnvelope[EnvironmentResponse])
async def get_environment_by_id(
    request: Request,
    env: Environment = Depends(get_environment),
) -> dict[str, Any]:
    return success_response(request=request, data=jsonable_encoder(_to_response(env)))


@router.get("/{environment_id}/dag", response_model=SuccessEnvelope[list[dict[str, Any]]])
async def get_environment_dag(
    request: Request,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # The dag of the latest run is what CD is executing; fall back to the stored spec before any run.
    dag = list(env.dag or [])
    if env.latest_env_recon_id is not None:
        try:
            latest = await recon_repo.get_environment_reconciliation(
                db, env.organization_id, env.latest_env_recon_id
            )
        except SQLAlchemyError as exc:
            raise HTTPException(status_code=500, detail="Database error while loading dag") from exc
        if latest is not None:
            dag = list(latest.dag or [])
    return success_response(request=request, data=dag)


@router.patch("/{environment_id}", response_model=SuccessEnvelope[ReconcileResponse | EnvironmentResponse])
async def update_environment(
    request: Request,
    payload: EnvironmentUpdateRequest,
    org: Organization = Depends(get_organization),
    team: Team = Depends(get_team),
    env: Environment = Depends(get_environment),
    cd_trigger: CdTrigger = Depends(get_cd_trigger_dep),
    auth_header: str | None = Depends(cd_auth_header),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    if not payload.is_reconcile:
        return success_response(request=request, data=jsonable_encoder(_to_response(env)))
    result = await request_reconcile(
        db,
        organization=org,
        team=team,
        environment=env,
        cd_trigger=cd_trigger,
        auth_header=auth_header,
    )
    await db.refresh(env)
    body = ReconcileResponse(
        environment=_to_response(env),
        reconcile_id=result.reconciliation.reconcile_id,
        components=result.components.as_dict(),
    )
    return success_response(request=request, data=jsonable_encoder(body))


@router.delete("/{environment_id}", response_model=SuccessEnvelope[EnvironmentResponse])
async def delete_environment(
    request: Request,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    env = await environments_repo.merge_and_save(db, env, is_deleted=True)
    await _commit(db, operation="delete_environment", environment_id=env.id)
    await db.refresh(env)
    return success_response(request=request, data=jsonable_encoder(_to_response(env)))


@router.get("/{environment_id}/audit", response_model=SuccessEnvelope[list[EnvironmentAuditEntry]])
async def get_environment_audit(
    request: Request,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        entries = await environment_audit_list(
            db, organization_id=env.organization_id, environment_id=env.id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading audit") from exc
    return success_response(request=request, data=jsonable_encoder(entries))
