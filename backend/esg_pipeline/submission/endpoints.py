"""Base and token URLs per ESG environment."""

from __future__ import annotations

from dataclasses import dataclass

from esg_pipeline.core.config import settings
from esg_pipeline.core.constants import EsgEnvironment

# Requests to this host never leave the process; the Demo transport answers them.
DEMO_HOST = "demo.esg.local"
DEMO_BASE_URL = f"https://{DEMO_HOST}/esg/v1"
DEMO_TOKEN_URL = f"https://{DEMO_HOST}/esg/oauth2/token"


@dataclass(frozen=True)
class EsgEndpoints:
    """URL table for every environment."""

    base_urls: dict[str, str]
    token_urls: dict[str, str]

    def base_url(self, environment: str) -> str:
        return self.base_urls[EsgEnvironment(environment)].rstrip("/")

    def token_url(self, environment: str) -> str:
        return self.token_urls[EsgEnvironment(environment)]

    @classmethod
    def from_settings(cls) -> "EsgEndpoints":
        return cls(
            base_urls={
                EsgEnvironment.TEST: settings.ESG_TEST_BASE_URL,
                EsgEnvironment.PRODUCTION: settings.ESG_PRODUCTION_BASE_URL,
                EsgEnvironment.DEMO: DEMO_BASE_URL,
            },
            token_urls={
                EsgEnvironment.TEST: settings.ESG_TEST_TOKEN_URL,
                EsgEnvironment.PRODUCTION: settings.ESG_PRODUCTION_TOKEN_URL,
                EsgEnvironment.DEMO: DEMO_TOKEN_URL,
            },
        )
