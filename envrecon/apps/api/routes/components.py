from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.apps.api.deps import (
    get_component,
    get_db,
    get_environment,
    get_object_store_dep,
    get_organization,
    get_team,
)
from envrecon.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from envrecon.apps.api.response import SuccessEnvelope, success_response
from envrecon.domain.models import Component, Environment, Organization, Team
from envrecon.persistence.repos import components as components_repo
from envrecon.persistence.repos import reconciliations as recon_repo
from envrecon.services.diff import order_by_dag
from envrecon.services.object_storage import ObjectStore, get_component_logs, get_state_file
from envrecon.services.reconciliation.audit import (
    ComponentAuditEntry,
    component_audit_list,
    latest_meaningful_component_run,
    to_component_audit_entry,
)


router = APIRouter(
    prefix="/orgs/{org_id}/teams/{team_id}/environments/{environment_id}/components",
    tags=["components"],
    responses=DEFAULT_ERROR_RESPONSES,
)


class ComponentResponse(BaseModel):
    id: str
    name: str
    latest_comp_recon_id: int | None
    latest: ComponentAuditEntry | None


@router.get("", response_model=SuccessEnvelope[list[ComponentResponse]])
async def list_components(
    request: Request,
    env: Environment = Depends(get_environment),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Live components in dag order, each with its current run pointer resolved.
    try:
        rows = await components_repo.list_live_components_with_latest(db, env.organization_id, env.id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while listing components") from exc
    latest_by_id = {component.id: latest for component, latest in rows}
    ordered = order_by_dag([component for component, _latest in rows], env.dag)
    data: list[ComponentResponse] = []
    for component in ordered:
        latest = latest_by_id[component.id]
        data.append(
            ComponentResponse(
                id=component.id,
                name=component.name,
                latest_comp_recon_id=component.latest_comp_recon_id,
                latest=to_component_audit_entry(latest) if latest is not None else None,
            )
        )
    return success_response(request=request, data=jsonable_encoder(data))


@router.get("/{component_id}/audit", response_model=SuccessEnvelope[list[ComponentAuditEntry]])
async def get_component_audit(
    request: Request,
    component: Component = Depends(get_component),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        entries = await component_audit_list(
            db, organization_id=component.organization_id, component_id=component.id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading audit") from exc
    return success_response(request=request, data=jsonable_encoder(entries))


@router.get("/{component_id}/latest", response_model=SuccessEnvelope[ComponentAuditEntry | None])
async def get_latest_component_run(
    request: Request,
    component: Component = Depends(get_component),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        latest = await latest_meaningful_component_run(
            db, organization_id=component.organization_id, component_id=component.id
        )
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading latest run") from exc
    data = jsonable_encoder(to_component_audit_entry(latest)) if latest is not None else None
    return success_response(request=request, data=data)


@router.get("/{component_id}/reconciliations/{reconcile_id}/logs")
async def get_component_run_logs(
    reconcile_id: int,
    request: Request,
    org: Organization = Depends(get_organization),
    team: Team = Depends(get_team),
    env: Environment = Depends(get_environment),
    component: Component = Depends(get_component),
    store: ObjectStore = Depends(get_object_store_dep),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    try:
        recon = await recon_repo.get_component_reconciliation(db, org.id, reconcile_id)
    except SQLAlchemyError as exc:
        raise HTTPException(status_code=500, detail="Database error while loading reconciliation") from exc
    if recon is None or recon.component_id != component.id:
        raise HTTPException(status_code=404, detail={"code": "NOT_FOUND", "message": "reconciliation not found"})
    logs = await get_component_logs(
        store,
        organization_name=org.name,
        team_name=team.name,
        environment_name=env.name,
        component_name=component.name,
        reconcile_id=reconcile_id,
    )
    return success_response(request=request, data=logs)


@router.get("/{component_id}/state")
async def get_component_state(
    request: Request,
    org: Organization = Depends(get_organization),
    team: Team = Depends(get_team),
    env: Environment = Depends(get_environment),
    component: Component = Depends(get_component),
    store: ObjectStore = Depends(get_object_store_dep),
) -> dict[str, Any]:
    state = await get_state_file(
        store,
        organization_name=org.name,
        team_name=team.name,
        environment_name=env.name,
        component_name=component.name,
    )
    return success_response(request=request, data=state)
