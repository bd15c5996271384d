from __future__ import annotations

import pytest

from envrecon.persistence.db import SessionLocal
from envrecon.persistence.repos.organizations import ensure_team


@pytest.mark.asyncio
async def test_ensure_team_is_idempotent() -> None:
    async with SessionLocal() as session:
        org, team = await ensure_team(session, organization_name="acme", team_name="platform")
        await session.commit()
    async with SessionLocal() as session:
        again_org, again_team = await ensure_team(session, organization_name="acme", team_name="platform")
        other_org, other_team = await ensure_team(session, organization_name="acme", team_name="data")
        await session.commit()

    assert (again_org.id, again_team.id) == (org.id, team.id)
    assert other_org.id == org.id
    assert other_team.id != team.id
