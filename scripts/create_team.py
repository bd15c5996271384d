from __future__ import annotations

import argparse
import asyncio
import sys

from envrecon.persistence.db import SessionLocal
from envrecon.persistence.repos.organizations import ensure_team


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provision an organization and team")
    parser.add_argument("--org", required=True, help="Organization name, used in CD hosts and bucket names")
    parser.add_argument("--team", required=True, help="Team name")
    return parser


async def _create_team(args: argparse.Namespace) -> int:
    async with SessionLocal() as session:
        org, team = await ensure_team(session, organization_name=args.org, team_name=args.team)
        await session.commit()

    print("Team ready:")
    print(f"  org_id: {org.id}")
    print(f"  team_id: {team.id}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_team(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_team failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
