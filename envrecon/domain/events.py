from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


EventType = Literal[
    "component.cost_updated",
    "environment_recon.cost_update_requested",
    "environment_recon.env_update_requested",
]

COMPONENT_COST_UPDATED: EventType = "component.cost_updated"
ENV_RECON_COST_UPDATE_REQUESTED: EventType = "environment_recon.cost_update_requested"
ENV_RECON_ENV_UPDATE_REQUESTED: EventType = "environment_recon.env_update_requested"


class ComponentCostUpdatedEvent(BaseModel):
    # Identify the component run by id only; handlers reload current state.
    organization_id: str
    component_reconcile_id: int
    environment_reconcile_id: int


class EnvironmentReconEvent(BaseModel):
    organization_id: str
    environment_reconcile_id: int
    environment_id: str


EVENT_PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    COMPONENT_COST_UPDATED: ComponentCostUpdatedEvent,
    ENV_RECON_COST_UPDATE_REQUESTED: EnvironmentReconEvent,
    ENV_RECON_ENV_UPDATE_REQUESTED: EnvironmentReconEvent,
}
