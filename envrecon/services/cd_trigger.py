from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Protocol

import httpx

from envrecon.core.config import get_settings
from envrecon.core.errors import CdAuthError, ConfigurationError, ExternalDependencyError
from envrecon.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


class CdTrigger(Protocol):
    async def reconcile(self, org_name: str, app_name: str, *, auth_header: str | None = None) -> None:
        ...


class CdCredentialCache:
    """Holds one CD bearer token and refreshes it by logging in again.

    The token is fetched lazily on first use and reused until ``ttl_s`` elapses.
    ``invalidate()`` drops it immediately, which callers do when the CD server
    rejects it. Concurrent callers share a single in-flight login.
    """

    def __init__(
        self,
        login: Callable[[], Awaitable[str]],
        *,
        ttl_s: int,
        time_source: Callable[[], float] | None = None,
    ) -> None:
        self._login = login
        self._ttl_s = ttl_s
        self._time_source = time_source or time.monotonic
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _valid(self) -> bool:
        return self._token is not None and self._time_source() < self._expires_at

    async def get_token(self) -> str:
        if self._valid():
            return self._token  # type: ignore[return-value]
        async with self._lock:
            if not self._valid():
                self._token = await self._login()
                self._expires_at = self._time_source() + max(0, self._ttl_s)
        return self._token  # type: ignore[return-value]

    async def auth_header(self) -> str:
        return f"Bearer {await self.get_token()}"

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


class ArgoCdClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        # Injected in tests with httpx.MockTransport.
        self._transport = transport

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport)

    async def login(self, username: str, password: str) -> str:
        start = time.monotonic()
        try:
            async with self._client() as client:
                response = await client.post(
                    self._url("/api/v1/session"),
                    json={"username": username, "password": password},
                )
        except httpx.HTTPError as exc:
            record_external_call(integration="cd.login", latency_ms=_elapsed_ms(start), success=False)
            logger.error("cd_login_failed username=%s", username, exc_info=exc)
            raise ExternalDependencyError("could not reach CD server") from exc
        record_external_call(
            integration="cd.login", latency_ms=_elapsed_ms(start), success=response.status_code < 400
        )
        if response.status_code in (401, 403):
            raise CdAuthError("CD login rejected")
        if response.status_code >= 400:
            logger.error("cd_login_failed username=%s status=%s", username, response.status_code)
            raise ExternalDependencyError(f"CD login responded with status {response.status_code}")
        token = response.json().get("token")
        if not token:
            raise ExternalDependencyError("CD login returned no token")
        return str(token)

    async def sync_application(self, org_name: str, app_name: str, auth_header: str) -> None:
        start = time.monotonic()
        try:
            async with self._client() as client:
                response = await client.post(
                    self._url(f"/api/v1/applications/{app_name}/sync"),
                    headers={"Authorization": auth_header},
                    json={"prune": True},
                )
        except httpx.HTTPError as exc:
            record_external_call(integration="cd.sync", latency_ms=_elapsed_ms(start), success=False)
            logger.error("cd_sync_failed org=%s app=%s", org_name, app_name, exc_info=exc)
            raise ExternalDependencyError("could not reach CD server") from exc
        record_external_call(
            integration="cd.sync", latency_ms=_elapsed_ms(start), success=response.status_code < 400
        )
        if response.status_code in (401, 403):
            raise CdAuthError("CD rejected bearer token")
        if response.status_code >= 400:
            logger.error("cd_sync_failed org=%s app=%s status=%s", org_name, app_name, response.status_code)
            raise ExternalDependencyError(f"CD sync responded with status {response.status_code}")


class ArgoCdTrigger:
    def __init__(
        self,
        client: ArgoCdClient,
        *,
        username: str,
        password: str | None,
        token_ttl_s: int,
    ) -> None:
        self._client = client
        self._username = username
        self._password = password
        self.credentials = CdCredentialCache(self._login, ttl_s=token_ttl_s)

    async def _login(self) -> str:
        if not self._password:
            raise ConfigurationError("CD_PASSWORD is not configured")
        return await self._client.login(self._username, self._password)

    async def reconcile(self, org_name: str, app_name: str, *, auth_header: str | None = None) -> None:
        # A header supplied by the caller is reused as-is; otherwise the cached service token is used.
        header = auth_header or await self.credentials.auth_header()
        logger.debug("cd_sync_requested org=%s app=%s", org_name, app_name)
        try:
            await self._client.sync_application(org_name, app_name, header)
        except CdAuthError:
            if auth_header is None:
                # Drop the rejected token so the next call logs in again.
                self.credentials.invalidate()
            raise
        increment_counter("cd.sync.requested")


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000.0


_trigger: ArgoCdTrigger | None = None


def get_cd_trigger() -> ArgoCdTrigger:
    # Share one trigger per process so the credential cache outlives single requests.
    global _trigger
    if _trigger is None:
        settings = get_settings()
        client = ArgoCdClient(settings.cd_base_url, timeout_s=settings.cd_timeout_ms / 1000.0)
        _trigger = ArgoCdTrigger(
            client,
            username=settings.cd_username,
            password=settings.cd_password,
            token_ttl_s=settings.cd_token_ttl_s,
        )
    return _trigger
