from __future__ import annotations

# Re-export reconciliation services for centralized imports.

from envrecon.services.reconciliation.audit import (
    ComponentAuditEntry,
    EnvironmentAuditEntry,
    batch_latest_component_runs,
    component_audit_list,
    environment_audit_list,
    latest_meaningful_component_run,
    latest_non_validation_failure,
)
from envrecon.services.reconciliation.costs import recompute_environment_cost, sum_component_costs
from envrecon.services.reconciliation.orchestrator import (
    BatchOutcome,
    EnvironmentRunResult,
    request_reconcile,
    start_environment_run,
)
from envrecon.services.reconciliation.sweeper import sweep_component, sweep_environment

__all__ = [
    "ComponentAuditEntry",
    "EnvironmentAuditEntry",
    "batch_latest_component_runs",
    "component_audit_list",
    "environment_audit_list",
    "latest_meaningful_component_run",
    "latest_non_validation_failure",
    "recompute_environment_cost",
    "sum_component_costs",
    "BatchOutcome",
    "EnvironmentRunResult",
    "request_reconcile",
    "start_environment_run",
    "sweep_component",
    "sweep_environment",
]
