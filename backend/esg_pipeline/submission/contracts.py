"""
Collaborator contracts consumed by the coordinator and poller.

Production implementations live in `store.py`, `workflow.py`,
`documents.py` and `settings.py`; tests substitute in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from esg_pipeline.submission.credentials import EsgCredentials


# ─── Value objects ─────────────────────────────────────

@dataclass
class TransitionResult:
    success: bool
    error: str | None = None
    from_status: str | None = None
    to_status: str | None = None


@dataclass
class ValidationOutcome:
    ok: bool
    validation_errors: list[str] = field(default_factory=list)


@dataclass
class GeneratedDocument:
    success: bool
    content: bytes | None = None
    filename: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class CaseSnapshot:
    """Read-only view of the case columns the pipeline cares about."""

    id: str
    status: str
    safety_report_id: str | None = None
    patient_initials: str | None = None
    primary_reaction: str | None = None
    primary_drug: str | None = None
    esg_submission_id: str | None = None
    esg_core_id: str | None = None
    last_submitted_at: datetime | None = None
    api_attempt_count: int = 0
    api_last_error: str | None = None
    fda_case_number: str | None = None
    acknowledgment_date: str | None = None


@dataclass
class AttemptRecord:
    id: str
    case_id: str
    attempt_number: int
    environment: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    esg_submission_id: str | None = None
    esg_core_id: str | None = None
    error: str | None = None
    error_category: str | None = None
    http_status_code: int | None = None
    ack_type: str | None = None
    ack_timestamp: str | None = None
    ack_fda_core_id: str | None = None
    ack_errors: list[dict] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.__dict__)
        for key in ("started_at", "completed_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class AwaitingAckCase:
    """A submitted case that is still waiting for a terminal acknowledgment."""

    case_id: str
    esg_submission_id: str
    esg_core_id: str | None
    last_submitted_at: datetime | None


# ─── Protocols ─────────────────────────────────────────

class DocumentGenerator(Protocol):
    async def generate(self, case_id: str) -> GeneratedDocument: ...


class WorkflowService(Protocol):
    async def transition(
        self, case_id: str, target_status: str, details: dict[str, Any] | None = None
    ) -> TransitionResult: ...

    async def can_enter_submission(self, case_id: str) -> ValidationOutcome: ...


class SubmissionStore(Protocol):
    async def get_case(self, case_id: str) -> CaseSnapshot | None: ...

    async def update_case(self, case_id: str, **fields: Any) -> None: ...

    async def historical_attempt_count(self, case_id: str) -> int: ...

    async def create_attempt(
        self, case_id: str, attempt_number: int, environment: str
    ) -> AttemptRecord: ...

    async def update_attempt(self, attempt_id: str, **fields: Any) -> None: ...

    async def latest_attempt(self, case_id: str) -> AttemptRecord | None: ...

    async def list_attempts(self, case_id: str) -> list[AttemptRecord]: ...

    async def append_history_event(
        self, case_id: str, event_type: str, details: dict[str, Any], notes: str | None = None
    ) -> None: ...

    async def cases_awaiting_ack(self) -> list[AwaitingAckCase]: ...


class SettingsProvider(Protocol):
    async def load(self): ...

    async def save(self, updates: dict[str, Any]): ...


class CredentialStore(Protocol):
    def get_credentials(self, environment: str) -> EsgCredentials | None: ...


class EventPublisher(Protocol):
    def publish(self, channel: str, payload: dict[str, Any]) -> None: ...
