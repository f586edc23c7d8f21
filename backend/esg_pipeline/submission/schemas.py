"""Request/response bodies exchanged with the ESG NextGen gateway."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from esg_pipeline.core.constants import AckType


class _EsgModel(BaseModel):
    """Gateway payloads are camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TokenResponse(BaseModel):
    """OAuth 2.0 client-credentials token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., ge=0)
    scope: str | None = None


class CreateSubmissionRequest(_EsgModel):
    submission_type: str = "ICSR"
    sender_company_name: str = ""
    sender_contact_name: str = ""
    sender_contact_email: str = ""


class CreateSubmissionResponse(_EsgModel):
    submission_id: str
    status: str | None = None
    created_at: str | None = None


class UploadResponse(_EsgModel):
    file_id: str | None = None
    filename: str | None = None
    size: int | None = None
    status: str | None = None

    @property
    def accepted(self) -> bool:
        return (self.status or "UPLOADED").upper() not in {"REJECTED", "FAILED"}


class FinalizeResponse(_EsgModel):
    submission_id: str | None = None
    status: str | None = None
    esg_core_id: str = Field(validation_alias=AliasChoices("esgCoreId", "coreId", "esg_core_id"))


class AckError(_EsgModel):
    code: str = ""
    message: str = ""
    field: str | None = None
    severity: str = "error"


class Acknowledgment(_EsgModel):
    """Terminal acknowledgment for a submission (ACK1/ACK2/ACK3 or NACK)."""

    submission_id: str | None = None
    acknowledgment_type: AckType = Field(
        validation_alias=AliasChoices("acknowledgmentType", "type", "acknowledgment_type"),
    )
    fda_core_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("fdaCoreId", "coreId", "fda_core_id"),
    )
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    details: str | None = None
    errors: list[AckError] = Field(default_factory=list)

    @property
    def is_nack(self) -> bool:
        return self.acknowledgment_type == AckType.NACK

    def error_summary(self) -> str:
        return "; ".join(e.message for e in self.errors if e.message) or "Rejected by FDA"
