"""
AuthManager — OAuth 2.0 client-credentials tokens for the ESG gateway.

One cached token per process.  A token is only reused for the
environment it was issued for and is refreshed 60 seconds before it
expires.  Refresh is serialised behind an asyncio.Lock so concurrent
callers trigger a single token request.

No retry logic lives here; callers decide whether a failure is worth
another attempt.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

import httpx
from pydantic import ValidationError

from esg_pipeline.core.config import settings
from esg_pipeline.core.constants import ErrorCategory
from esg_pipeline.core.logging import get_logger
from esg_pipeline.submission.contracts import CredentialStore
from esg_pipeline.submission.endpoints import EsgEndpoints
from esg_pipeline.submission.errors import (
    AuthError,
    CredentialsInvalidError,
    CredentialsMissingError,
    categorize_http_status,
)
from esg_pipeline.submission.schemas import TokenResponse

logger = get_logger(__name__)

# Refresh tokens this many seconds before they expire (clock / latency skew)
TOKEN_REFRESH_MARGIN_SECONDS = 60


@dataclass(frozen=True)
class AccessToken:
    """An issued bearer token.  Never mutated; replaced on refresh."""

    value: str
    token_type: str
    expires_at: float           # epoch seconds
    environment: str

    def is_valid_for(self, environment: str, now: float) -> bool:
        if self.environment != environment:
            return False
        return now < self.expires_at - TOKEN_REFRESH_MARGIN_SECONDS


@dataclass
class ConnectionTestResult:
    """Outcome of a forced token refresh against one environment."""

    success: bool
    environment: str
    latency_ms: int
    token_valid: bool = False
    error: str | None = None
    is_demo_mode: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class AuthManager:
    """Obtains and caches access tokens per environment."""

    def __init__(
        self,
        credential_store: CredentialStore,
        http_client: httpx.AsyncClient,
        *,
        endpoints: EsgEndpoints | None = None,
        timeout: float = settings.ESG_REQUEST_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credential_store = credential_store
        self._http = http_client
        self._endpoints = endpoints or EsgEndpoints.from_settings()
        self._timeout = timeout
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def current_token(self) -> AccessToken | None:
        return self._token

    def is_valid(self, environment: str | None = None) -> bool:
        """True iff a cached token exists, matches `environment` and is outside the refresh margin."""
        token = self._token
        if token is None:
            return False
        if environment is None:
            environment = token.environment
        return token.is_valid_for(environment, self._clock())

    async def get_token(self, environment: str) -> str:
        """Return a bearer token for `environment`, refreshing when needed."""
        if self.is_valid(environment):
            return self._token.value

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self.is_valid(environment):
                return self._token.value
            token = await self._request_token(environment)
            return token.value

    async def refresh(self, environment: str) -> str:
        """Unconditionally request a new token."""
        async with self._lock:
            token = await self._request_token(environment)
            return token.value

    def clear_token_cache(self) -> None:
        """Drop the cached token.  Stored credentials are unaffected."""
        self._token = None

    async def test_connection(self, environment: str) -> ConnectionTestResult:
        started = time.monotonic()
        try:
            await self.refresh(environment)
        except AuthError as exc:
            return ConnectionTestResult(
                success=False,
                environment=environment,
                latency_ms=int((time.monotonic() - started) * 1000),
                error=str(exc),
                is_demo_mode=environment == "Demo",
            )
        return ConnectionTestResult(
            success=True,
            environment=environment,
            latency_ms=int((time.monotonic() - started) * 1000),
            token_valid=True,
            is_demo_mode=environment == "Demo",
        )

    # ─── Internal ──────────────────────────────────────

    async def _request_token(self, environment: str) -> AccessToken:
        credentials = self._credential_store.get_credentials(environment)
        if credentials is None:
            raise CredentialsMissingError(
                "No API credentials configured. Please configure in Settings."
            )

        token_url = self._endpoints.token_url(environment)
        log = logger.bind(environment=environment, token_url=token_url)

        try:
            response = await self._http.post(
                token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": credentials.client_id,
                    "client_secret": credentials.secret_key,
                },
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            log.warning("Token request timed out")
            raise AuthError(
                "Authentication request timed out. Please check your network connection.",
                ErrorCategory.NETWORK,
            ) from exc
        except httpx.TransportError as exc:
            log.warning("Token request failed at transport level", error=str(exc))
            raise AuthError(f"Network error: {exc}", ErrorCategory.NETWORK) from exc

        if response.status_code in (401, 403):
            raise CredentialsInvalidError(
                "Invalid API credentials. Please verify your Client ID and Secret Key.",
                http_status=response.status_code,
            )
        if not response.is_success:
            raise AuthError(
                f"Authentication failed (HTTP {response.status_code}): {response.text[:200]}",
                categorize_http_status(response.status_code),
                http_status=response.status_code,
                response_body=response.text,
            )

        try:
            payload = TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise AuthError(f"Malformed token response: {exc}", ErrorCategory.UNKNOWN) from exc

        token = AccessToken(
            value=payload.access_token,
            token_type=payload.token_type or "Bearer",
            expires_at=self._clock() + payload.expires_in,
            environment=environment,
        )
        self._token = token

        log.info("Token obtained", expires_in=payload.expires_in)
        return token
