from __future__ import annotations

import json

import httpx
import pytest

from envrecon.core.errors import CdAuthError, ConfigurationError, ExternalDependencyError
from envrecon.services.cd_trigger import ArgoCdClient, ArgoCdTrigger, CdCredentialCache


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _trigger(handler, *, password: str | None = "secret", ttl_s: int = 300) -> ArgoCdTrigger:
    client = ArgoCdClient("https://cd.example.test/", timeout_s=1.0, transport=httpx.MockTransport(handler))
    return ArgoCdTrigger(client, username="zlapi", password=password, token_ttl_s=ttl_s)


@pytest.mark.asyncio
async def test_login_then_sync_uses_bearer_token() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path == "/api/v1/session":
            assert json.loads(request.content) == {"username": "zlapi", "password": "secret"}
            return httpx.Response(200, json={"token": "tok-1"})
        return httpx.Response(200, json={})

    trigger = _trigger(handler)
    await trigger.reconcile("acme", "platform-dev")

    assert [call.url.path for call in calls] == [
        "/api/v1/session",
        "/api/v1/applications/platform-dev/sync",
    ]
    assert calls[1].headers["Authorization"] == "Bearer tok-1"


@pytest.mark.asyncio
async def test_cached_token_is_reused_across_calls() -> None:
    logins = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal logins
        if request.url.path == "/api/v1/session":
            logins += 1
            return httpx.Response(200, json={"token": f"tok-{logins}"})
        return httpx.Response(200, json={})

    trigger = _trigger(handler)
    await trigger.reconcile("acme", "platform-dev")
    await trigger.reconcile("acme", "platform-prod")
    assert logins == 1


@pytest.mark.asyncio
async def test_caller_supplied_header_skips_login() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path != "/api/v1/session"
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={})

    trigger = _trigger(handler, password=None)
    await trigger.reconcile("acme", "platform-dev", auth_header="Bearer caller")
    assert seen == ["Bearer caller"]


@pytest.mark.asyncio
async def test_rejected_token_is_invalidated() -> None:
    logins = 0
    reject_sync = True

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal logins
        if request.url.path == "/api/v1/session":
            logins += 1
            return httpx.Response(200, json={"token": f"tok-{logins}"})
        return httpx.Response(401 if reject_sync else 200, json={})

    trigger = _trigger(handler)
    with pytest.raises(CdAuthError):
        await trigger.reconcile("acme", "platform-dev")

    reject_sync = False
    await trigger.reconcile("acme", "platform-dev")
    assert logins == 2


@pytest.mark.asyncio
async def test_missing_password_is_a_configuration_error() -> None:
    trigger = _trigger(lambda request: httpx.Response(200, json={}), password=None)
    with pytest.raises(ConfigurationError):
        await trigger.reconcile("acme", "platform-dev")


@pytest.mark.asyncio
async def test_server_errors_surface_as_external_dependency_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/v1/session":
            return httpx.Response(200, json={"token": "tok"})
        return httpx.Response(503, json={"message": "unavailable"})

    trigger = _trigger(handler)
    with pytest.raises(ExternalDependencyError):
        await trigger.reconcile("acme", "platform-dev")


@pytest.mark.asyncio
async def test_transport_failures_surface_as_external_dependency_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = ArgoCdClient("https://cd.example.test", timeout_s=1.0, transport=httpx.MockTransport(handler))
    with pytest.raises(ExternalDependencyError):
        await client.login("zlapi", "secret")


@pytest.mark.asyncio
async def test_credential_cache_refreshes_after_ttl() -> None:
    clock = _FakeClock()
    tokens = iter(["first", "second"])

    async def login() -> str:
        return next(tokens)

    cache = CdCredentialCache(login, ttl_s=60, time_source=clock)
    assert await cache.auth_header() == "Bearer first"
    clock.now += 30
    assert await cache.get_token() == "first"
    clock.now += 31
    assert await cache.get_token() == "second"


@pytest.mark.asyncio
async def test_credential_cache_invalidate_forces_login() -> None:
    tokens = iter(["first", "second"])

    async def login() -> str:
        return next(tokens)

    cache = CdCredentialCache(login, ttl_s=600)
    assert await cache.get_token() == "first"
    cache.invalidate()
    assert await cache.get_token() == "second"
