"""
Runtime ESG settings.

Process defaults come from `core.config.settings` (environment / .env).
Operators override them through rows in `app_settings` whose keys carry
the `esg_api_` prefix, e.g. `esg_api_polling_interval_minutes = "10"`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, ValidationError

from esg_pipeline.core.config import settings
from esg_pipeline.core.constants import DemoScenario, DemoSpeed, EsgEnvironment
from esg_pipeline.core.logging import get_logger
from esg_pipeline.repositories import app_settings as settings_repo

logger = get_logger(__name__)

SETTINGS_KEY_PREFIX = "esg_api_"


class EsgApiSettings(BaseModel):
    environment: EsgEnvironment = EsgEnvironment.TEST
    sender_company_name: str = ""
    sender_contact_name: str = ""
    sender_contact_email: str = ""
    polling_interval_minutes: int = Field(5, ge=1, le=60)
    polling_timeout_hours: int = Field(48, ge=1, le=168)
    max_automatic_retries: int = Field(3, ge=0, le=10)
    max_total_attempts: int = Field(5, ge=1, le=50)
    is_configured: bool = False
    demo_scenario: DemoScenario = DemoScenario.HAPPY_PATH
    demo_speed: DemoSpeed = DemoSpeed.REALTIME

    @property
    def is_demo_mode(self) -> bool:
        return self.environment == EsgEnvironment.DEMO

    @property
    def can_poll(self) -> bool:
        """Demo never needs credentials; other environments must be configured."""
        return self.is_configured or self.is_demo_mode


def env_defaults() -> EsgApiSettings:
    """Settings as configured by environment variables alone."""
    return EsgApiSettings(
        environment=settings.ESG_ENVIRONMENT,
        sender_company_name=settings.ESG_SENDER_COMPANY_NAME,
        sender_contact_name=settings.ESG_SENDER_CONTACT_NAME,
        sender_contact_email=settings.ESG_SENDER_CONTACT_EMAIL,
        polling_interval_minutes=settings.ESG_POLLING_INTERVAL_MINUTES,
        polling_timeout_hours=settings.ESG_POLLING_TIMEOUT_HOURS,
        max_automatic_retries=settings.ESG_MAX_AUTOMATIC_RETRIES,
        max_total_attempts=settings.ESG_MAX_TOTAL_ATTEMPTS,
        is_configured=bool(settings.ESG_CLIENT_ID and settings.ESG_CLIENT_SECRET),
        demo_scenario=settings.ESG_DEMO_SCENARIO,
        demo_speed=settings.ESG_DEMO_SPEED,
    )


def merge_settings(defaults: EsgApiSettings, stored: dict[str, Any]) -> EsgApiSettings:
    """
    Overlay stored values on `defaults`.

    Stored values that fail validation are logged and ignored, so one bad
    row cannot take the whole subsystem down.
    """
    merged = defaults.model_dump()
    overrides = {k: v for k, v in stored.items() if k in EsgApiSettings.model_fields and v is not None}

    while True:
        try:
            return EsgApiSettings.model_validate({**merged, **overrides})
        except ValidationError as exc:
            bad_keys = {err["loc"][0] for err in exc.errors() if err["loc"]}
            bad_keys &= set(overrides)
            if not bad_keys:
                raise
            logger.warning("Ignoring invalid stored ESG settings", keys=sorted(bad_keys))
            for key in bad_keys:
                overrides.pop(key)


class DatabaseSettingsProvider:
    """Loads and saves EsgApiSettings through the app_settings table."""

    def __init__(self, session_factory, defaults: EsgApiSettings | None = None) -> None:
        self._session_factory = session_factory
        self._defaults = defaults

    async def load(self) -> EsgApiSettings:
        async with self._session_factory() as db:
            rows = await settings_repo.get_settings_by_prefix(db, SETTINGS_KEY_PREFIX)
        stored = {key[len(SETTINGS_KEY_PREFIX):]: value for key, value in rows.items()}
        return merge_settings(self._defaults or env_defaults(), stored)

    async def save(self, updates: dict[str, Any]) -> EsgApiSettings:
        """Validate `updates` against the current settings and persist the changed keys."""
        unknown = set(updates) - set(EsgApiSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown ESG settings: {', '.join(sorted(unknown))}")

        current = await self.load()
        updated = EsgApiSettings.model_validate({**current.model_dump(), **updates})

        async with self._session_factory() as db:
            for key in updates:
                value = getattr(updated, key)
                await settings_repo.upsert_setting(
                    db, f"{SETTINGS_KEY_PREFIX}{key}", _serialise(value)
                )
            await db.commit()

        logger.info("ESG settings saved", keys=sorted(updates))
        return updated


def _serialise(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
