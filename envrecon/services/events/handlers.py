from __future__ import annotations

from envrecon.domain.events import (
    COMPONENT_COST_UPDATED,
    ENV_RECON_COST_UPDATE_REQUESTED,
    ENV_RECON_ENV_UPDATE_REQUESTED,
    ComponentCostUpdatedEvent,
    EnvironmentReconEvent,
)
from envrecon.services.events.bus import subscribe
from envrecon.services.reconciliation.costs import (
    on_component_cost_reported,
    on_environment_cost_recompute_requested,
    on_environment_update_requested,
)


async def handle_component_cost_updated(event: ComponentCostUpdatedEvent) -> None:
    await on_component_cost_reported(event)


async def handle_environment_cost_update_requested(event: EnvironmentReconEvent) -> None:
    await on_environment_cost_recompute_requested(event)


async def handle_environment_update_requested(event: EnvironmentReconEvent) -> None:
    await on_environment_update_requested(event)


def register_default_handlers() -> None:
    # Idempotent: subscribe() ignores handlers that are already registered.
    subscribe(COMPONENT_COST_UPDATED, handle_component_cost_updated)
    subscribe(ENV_RECON_COST_UPDATE_REQUESTED, handle_environment_cost_update_requested)
    subscribe(ENV_RECON_ENV_UPDATE_REQUESTED, handle_environment_update_requested)
