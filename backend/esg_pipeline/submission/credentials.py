"""
Client-credential lookup for the OAuth token request.

Storage at rest is somebody else's job; this module only reads what the
deployment provides (environment variables / .env).  The Demo environment
always uses the fixed, obviously fake demo credentials.
"""

from __future__ import annotations

from dataclasses import dataclass

from esg_pipeline.core.config import settings
from esg_pipeline.core.constants import EsgEnvironment


@dataclass(frozen=True)
class EsgCredentials:
    client_id: str
    secret_key: str

    def __repr__(self) -> str:
        return f"EsgCredentials(client_id={self.client_id!r}, secret_key='***')"


DEMO_CREDENTIALS = EsgCredentials(client_id="DEMO-CLIENT-001", secret_key="demo-secret-not-real")


class SettingsCredentialStore:
    """Reads ESG_CLIENT_ID / ESG_CLIENT_SECRET from application settings."""

    def __init__(self, client_id: str | None = None, secret_key: str | None = None) -> None:
        self._client_id = settings.ESG_CLIENT_ID if client_id is None else client_id
        self._secret_key = settings.ESG_CLIENT_SECRET if secret_key is None else secret_key

    def get_credentials(self, environment: str) -> EsgCredentials | None:
        if environment == EsgEnvironment.DEMO:
            return DEMO_CREDENTIALS
        if not self._client_id or not self._secret_key:
            return None
        return EsgCredentials(client_id=self._client_id, secret_key=self._secret_key)

    def has_credentials(self) -> bool:
        return bool(self._client_id and self._secret_key)
