from __future__ import annotations

from envrecon.core.errors import ExternalDependencyError


class RecordingCdTrigger:
    # Stands in for Argo CD in API tests; records every sync request.
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.fail = fail

    async def reconcile(self, org_name: str, app_name: str, *, auth_header: str | None = None) -> None:
        self.calls.append((org_name, app_name, auth_header))
        if self.fail:
            raise ExternalDependencyError("CD sync responded with status 502")
