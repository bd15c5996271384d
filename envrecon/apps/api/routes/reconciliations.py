from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.apps.api.deps import get_db, get_environment, get_organization
from envrecon.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from envrecon.apps.api.response import SuccessEnvelope, success_response
from envrecon.domain.models import Environment, EnvironmentReconciliation, Organization
from envrecon.persistence.repos import reconciliations as recon_repo
from envrecon.services.reconciliation.audit import (
    ComponentAuditEntry,
    batch_latest_component_runs,
    latest_non_validation_failure,
    to_component_audit_entry,
)
from envrecon.services.reconciliation.records import (
    ComponentReconciliationUpdate,
    EnvironmentReconciliationUpdate,
    ErrorEnvironmentReconciliation,
    create_error_environment_reconciliation,
    start_component_run,
    update_component_reconciliation,
    update_environment_reconciliation,
)


router = APIRouter(prefix="/orgs/{org_id}", tags=["reconciliations"], responses=DEFAULT_ERROR_RESPONSES)


class EnvironmentReconciliationResponse(BaseModel):
    reconcile_id: int
    organization_id: str
    team_id: str
    environment_id: str
    status: str
    dag: list[dict[str, Any]]
    start_date_time: datetime
    end_date_time: datetime | None
    error_message: str | None
    git_sha: str | None
    estimated_cost: float


class ComponentRunRequest(BaseModel):
    environment_reconcile_id: int
    component_id: str = Field(min_length=1)
    status: str | None = None
    start_date_time: datetime | None = None


class LatestComponentRunsRequest(BaseModel):
    component_ids: list[str] = Field(default_factory=list, max_length=500)


def _to_env_response(recon: EnvironmentReconciliation) -> EnvironmentReconciliationResponse:
    return EnvironmentReconciliationResponse(
        reconcile_id=recon.reconcile_id,
        organization_id=recon.organization_id,
        team_id=recon.team_id,
        environment_id=recon.environment_id,
        status=recon.status,
        dag=list(recon.dag or []),
        start_date_time=recon.start_date_time,
        end_date_time=recon.end_date_time,
        error_message=recon.error_message,
        git_sha=recon.git_sha or None,
        estimated_cost=recon.estimated_cost or 0.0,
    )


@router.get(
    "/reconciliations/environments/{reconcile_id}",
    response_model=SuccessEnvelope[EnvironmentReconciliationResponse],
)
async def get_environment_run(
    reconcile_id: int,
    request: Request,
    org: Organization = Depends(get_organization),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        recon = await recon_repo.get_environment_reconciliation(db, org.id, reconcile_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading reconciliation") from exc
    if recon is None:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "reconciliation not found"})
    return success_response(request=request, data=jsonable_encoder(_to_env_response(recon)))


@router.patch(
    "/reconciliations/environments/{reconcile_id}",
    response_model=SuccessEnvelope[EnvironmentReconciliationResponse],
)
async def patch_environment_run(
    reconcile_id: int,
    request: Request,
    payload: EnvironmentReconciliationUpdate,
    org: Organization = Depends(get_organization),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Status, end time and cost reported by the CD layer.
    recon = await update_environment_reconciliation(
        db, organization_id=org.id, reconcile_id=reconcile_id, changes=payload
    )
    return success_response(request=request, data=jsonable_encoder(_to_env_response(recon)))


@router.post(
    "/reconciliations/components",
    response_model=SuccessEnvelope[ComponentAuditEntry],
    status_code=201,
)
async def create_component_run(
    request: Request,
    payload: ComponentRunRequest,
    org: Organization = Depends(get_organization),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    recon = await start_component_run(
        db,
        organization_id=org.id,
        environment_reconcile_id=payload.environment_reconcile_id,
        component_id=payload.component_id,
        status=payload.status,
        start_date_time=payload.start_date_time,
    )
    return success_response(request=request, data=jsonable_encoder(to_component_audit_entry(recon)))


@router.patch(
    "/reconciliations/components/{reconcile_id}",
    response_model=SuccessEnvelope[ComponentAuditEntry],
)
async def patch_component_run(
    reconcile_id: int,
    request: Request,
    payload: ComponentReconciliationUpdate,
    org: Organization = Depends(get_organization),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    recon = await update_component_reconciliation(
        db, organization_id=org.id, reconcile_id=reconcile_id, changes=payload
    )
    return success_response(request=request, data=jsonable_encoder(to_component_audit_entry(recon)))


@router.post(
    "/reconciliations/components/latest",
    response_model=SuccessEnvelope[dict[str, ComponentAuditEntry]],
)
async def get_latest_component_runs(
    request: Request,
    payload: LatestComponentRunsRequest,
    org: Organization = Depends(get_organization),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        latest = await batch_latest_component_runs(
            db, organization_id=org.id, component_ids=payload.component_ids
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading latest runs") from exc
    data = {component_id: to_component_audit_entry(run) for component_id, run in latest.items()}
    return success_response(request=request, data=jsonable_encoder(data))


@router.post(
    "/teams/{team_id}/environments/{environment_id}/reconciliations/errors",
    response_model=SuccessEnvelope[EnvironmentReconciliationResponse],
    status_code=201,
)
async def record_failed_environment_run(
    request: Request,
    payload: ErrorEnvironmentReconciliation,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    recon = await create_error_environment_reconciliation(db, environment=env, record=payload)
    return success_response(request=request, data=jsonable_encoder(_to_env_response(recon)))


@router.get(
    "/teams/{team_id}/environments/{environment_id}/reconciliations/latest-applied",
    response_model=SuccessEnvelope[EnvironmentReconciliationResponse | None],
)
async def get_latest_applied_environment_run(
    request: Request,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Latest run that got past validation, open runs first.
    try:
        recon = await latest_non_validation_failure(
            db, organization_id=env.organization_id, environment_id=env.id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading reconciliation") from exc
    data = jsonable_encoder(_to_env_response(recon)) if recon is not None else None
    return success_response(request=request, data=data)
