"""ESG submission request/response schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from esg_pipeline.core.constants import DemoScenario, DemoSpeed, EsgEnvironment


class SubmitRequest(BaseModel):
    """Request payload for submitting a single case."""

    environment: EsgEnvironment | None = None
    demo_scenario: DemoScenario | None = None
    demo_speed: DemoSpeed | None = None


class BatchSubmitRequest(BaseModel):
    """Queue several cases for submission by the Celery workers."""

    case_ids: list[str] = Field(..., min_length=1, max_length=500)
    environment: EsgEnvironment | None = None


class PollingIntervalRequest(BaseModel):
    minutes: int = Field(..., ge=1, le=60)


class ConnectionTestRequest(BaseModel):
    environment: EsgEnvironment | None = None


class EsgSettingsUpdate(BaseModel):
    """Partial update; only fields that are set are persisted."""

    environment: EsgEnvironment | None = None
    sender_company_name: str | None = Field(None, max_length=255)
    sender_contact_name: str | None = Field(None, max_length=255)
    sender_contact_email: str | None = Field(None, max_length=320)
    polling_interval_minutes: int | None = Field(None, ge=1, le=60)
    polling_timeout_hours: int | None = Field(None, ge=1, le=168)
    max_automatic_retries: int | None = Field(None, ge=0, le=10)
    max_total_attempts: int | None = Field(None, ge=1, le=50)
    is_configured: bool | None = None
    demo_scenario: DemoScenario | None = None
    demo_speed: DemoSpeed | None = None


class EsgSettingsResponse(BaseModel):
    environment: EsgEnvironment
    sender_company_name: str
    sender_contact_name: str
    sender_contact_email: str
    polling_interval_minutes: int
    polling_timeout_hours: int
    max_automatic_retries: int
    max_total_attempts: int
    is_configured: bool
    demo_scenario: DemoScenario
    demo_speed: DemoSpeed
    has_credentials: bool
