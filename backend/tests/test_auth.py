from __future__ import annotations

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from esg_pipeline.core.constants import ErrorCategory
from esg_pipeline.submission.auth import TOKEN_REFRESH_MARGIN_SECONDS
from esg_pipeline.submission.credentials import SettingsCredentialStore
from esg_pipeline.submission.errors import AuthError, CredentialsInvalidError, CredentialsMissingError
from tests.fakes import FakeGateway, build_client


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_token_is_cached_until_refresh_margin() -> None:
    gateway = FakeGateway()
    clock = _Clock()
    auth = build_client(gateway, clock=clock).auth

    first = await auth.get_token("Test")
    second = await auth.get_token("Test")
    assert first == second
    assert gateway.count("token") == 1

    clock.now += 3600 - TOKEN_REFRESH_MARGIN_SECONDS
    third = await auth.get_token("Test")
    assert third != first
    assert gateway.count("token") == 2


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_token_request() -> None:
    gateway = FakeGateway()
    auth = build_client(gateway).auth

    tokens = await asyncio.gather(*(auth.get_token("Test") for _ in range(5)))

    assert len(set(tokens)) == 1
    assert gateway.count("token") == 1


@pytest.mark.asyncio
async def test_token_is_not_reused_across_environments() -> None:
    gateway = FakeGateway()
    auth = build_client(gateway).auth

    await auth.get_token("Test")
    assert auth.is_valid("Test")
    assert not auth.is_valid("Production")

    await auth.get_token("Production")
    assert gateway.count("token") == 2
    assert auth.current_token.environment == "Production"


@pytest.mark.asyncio
async def test_token_request_uses_client_credentials_grant() -> None:
    gateway = FakeGateway()
    auth = build_client(gateway).auth

    await auth.get_token("Test")

    request = gateway.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://esg.test/esg/oauth2/token"
    form = parse_qs(request.content.decode())
    assert form["grant_type"] == ["client_credentials"]
    assert form["client_id"] == ["client-id"]
    assert form["client_secret"] == ["secret"]


@pytest.mark.asyncio
async def test_missing_credentials_fail_without_network_call() -> None:
    gateway = FakeGateway()
    store = SettingsCredentialStore(client_id="", secret_key="")
    auth = build_client(gateway, credential_store=store).auth

    with pytest.raises(CredentialsMissingError) as excinfo:
        await auth.get_token("Test")

    assert excinfo.value.category == ErrorCategory.AUTHENTICATION
    assert gateway.calls == []


def test_demo_environment_uses_builtin_credentials() -> None:
    store = SettingsCredentialStore(client_id="", secret_key="")
    credentials = store.get_credentials("Demo")
    assert credentials is not None
    assert "demo-secret" not in repr(credentials)
    assert store.get_credentials("Test") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [401, 403])
async def test_rejected_credentials_are_not_retryable(status_code: int) -> None:
    gateway = FakeGateway()
    gateway.queue("token", httpx.Response(status_code, json={"error": "invalid_client"}))
    auth = build_client(gateway).auth

    with pytest.raises(CredentialsInvalidError) as excinfo:
        await auth.get_token("Test")

    assert excinfo.value.http_status == status_code
    assert not excinfo.value.retryable
    assert auth.current_token is None


@pytest.mark.asyncio
async def test_server_error_from_token_endpoint_is_categorised() -> None:
    gateway = FakeGateway()
    gateway.queue("token", httpx.Response(503, text="maintenance"))
    auth = build_client(gateway).auth

    with pytest.raises(AuthError) as excinfo:
        await auth.get_token("Test")

    assert excinfo.value.category == ErrorCategory.SERVER_ERROR
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_rate_limited_token_request_is_retryable() -> None:
    gateway = FakeGateway()
    gateway.queue("token", httpx.Response(429, json={"message": "slow down"}))
    auth = build_client(gateway).auth

    with pytest.raises(AuthError) as excinfo:
        await auth.get_token("Test")

    assert excinfo.value.category == ErrorCategory.RATE_LIMIT
    assert excinfo.value.http_status == 429
    assert excinfo.value.retryable


@pytest.mark.asyncio
async def test_transport_failure_is_a_network_error() -> None:
    gateway = FakeGateway()
    gateway.queue("token", httpx.ConnectError("connection refused"))
    auth = build_client(gateway).auth

    with pytest.raises(AuthError) as excinfo:
        await auth.get_token("Test")

    assert excinfo.value.category == ErrorCategory.NETWORK


@pytest.mark.asyncio
async def test_clear_token_cache_forces_new_request() -> None:
    gateway = FakeGateway()
    auth = build_client(gateway).auth

    await auth.get_token("Test")
    auth.clear_token_cache()
    assert not auth.is_valid()

    await auth.get_token("Test")
    assert gateway.count("token") == 2


@pytest.mark.asyncio
async def test_connection_test_reports_outcome() -> None:
    gateway = FakeGateway()
    gateway.queue("token", httpx.Response(401, json={"error": "invalid_client"}))
    auth = build_client(gateway).auth

    failed = await auth.test_connection("Test")
    assert not failed.success
    assert "Invalid API credentials" in failed.error

    passed = await auth.test_connection("Test")
    assert passed.success
    assert passed.token_valid
    assert passed.to_dict()["environment"] == "Test"
