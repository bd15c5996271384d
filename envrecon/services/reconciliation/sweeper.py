from __future__ import annotations

from collections.abc import Sequence
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from envrecon.persistence.guards import raise_store_error
from envrecon.persistence.repos import reconciliations as recon_repo


logger = logging.getLogger(__name__)


async def sweep_environment(
    session: AsyncSession,
    *,
    organization_id: str,
    team_id: str,
    environment_id: str,
    keep_reconcile_ids: Sequence[int],
) -> int:
    # Retire every open environment run in scope except the ones being kept.
    try:
        retired = await recon_repo.retire_open_environment_reconciliations(
            session,
            organization_id=organization_id,
            team_id=team_id,
            environment_id=environment_id,
            keep_reconcile_ids=keep_reconcile_ids,
        )
    except SQLAlchemyError as exc:
        raise_store_error(exc, operation="sweep_environment", environment_id=environment_id)
    if retired:
        logger.info(
            "stale_environment_runs_retired environment_id=%s retired=%s kept=%s",
            environment_id,
            retired,
            list(keep_reconcile_ids),
        )
    return retired


async def sweep_component(
    session: AsyncSession,
    *,
    organization_id: str,
    environment_reconcile_id: int,
    component_id: str,
    keep_reconcile_ids: Sequence[int],
) -> int:
    # Scoped to one parent run; open runs under other parents are untouched.
    try:
        retired = await recon_repo.retire_open_component_reconciliations(
            session,
            organization_id=organization_id,
            environment_reconcile_id=environment_reconcile_id,
            component_id=component_id,
            keep_reconcile_ids=keep_reconcile_ids,
        )
    except SQLAlchemyError as exc:
        raise_store_error(
            exc,
            operation="sweep_component",
            component_id=component_id,
            environment_reconcile_id=environment_reconcile_id,
        )
    if retired:
        logger.info(
            "stale_component_runs_retired component_id=%s environment_reconcile_id=%s retired=%s",
            component_id,
            environment_reconcile_id,
            retired,
        )
    return retired
