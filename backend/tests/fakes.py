"""In-memory collaborators and a scripted ESG gateway for tests."""

from __future__ import annotations

import dataclasses
import itertools
from collections.abc import Callable
from typing import Any

import httpx

from esg_pipeline.core.constants import CaseStatus, EsgEnvironment
from esg_pipeline.submission.auth import AuthManager
from esg_pipeline.submission.contracts import (
    AttemptRecord,
    AwaitingAckCase,
    CaseSnapshot,
    GeneratedDocument,
    TransitionResult,
    ValidationOutcome,
)
from esg_pipeline.submission.credentials import SettingsCredentialStore
from esg_pipeline.submission.endpoints import DEMO_BASE_URL, DEMO_TOKEN_URL, EsgEndpoints
from esg_pipeline.submission.esg_client import EsgClient
from esg_pipeline.submission.settings import EsgApiSettings
from esg_pipeline.submission.workflow import is_valid_transition

ENDPOINTS = EsgEndpoints(
    base_urls={
        EsgEnvironment.TEST: "https://esg.test/esg/v1",
        EsgEnvironment.PRODUCTION: "https://esg.prod/esg/v1",
        EsgEnvironment.DEMO: DEMO_BASE_URL,
    },
    token_urls={
        EsgEnvironment.TEST: "https://esg.test/esg/oauth2/token",
        EsgEnvironment.PRODUCTION: "https://esg.prod/esg/oauth2/token",
        EsgEnvironment.DEMO: DEMO_TOKEN_URL,
    },
)

XML_DOCUMENT = b'<?xml version="1.0" encoding="UTF-8"?><ichicsr lang="en"/>'


class FakeGateway:
    """
    httpx.MockTransport handler answering like a healthy ESG gateway.

    `queue(key, ...)` scripts the next responses for one operation; an
    item may be an httpx.Response, an exception to raise, or a callable
    taking the request.  `on_request` is called with the operation key
    before the response is produced.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.requests: list[httpx.Request] = []
        self.scripted: dict[str, list[Any]] = {}
        self.on_request: Callable[[str], None] | None = None
        self.ack_payload: dict | None = None
        self._tokens = itertools.count(1)

    def queue(self, key: str, *items: Any) -> None:
        self.scripted.setdefault(key, []).extend(items)

    def count(self, key: str) -> int:
        return self.calls.count(key)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = _operation(request)
        self.calls.append(key)
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(key)

        scripted = self.scripted.get(key)
        if scripted:
            item = scripted.pop(0)
            if isinstance(item, Exception):
                raise item
            if callable(item):
                return item(request)
            return item
        return self._default(key)

    def _default(self, key: str) -> httpx.Response:
        if key == "token":
            return httpx.Response(200, json={
                "access_token": f"token-{next(self._tokens)}",
                "token_type": "Bearer",
                "expires_in": 3600,
            })
        if key == "create":
            return httpx.Response(201, json={"submissionId": "SUB-1", "status": "CREATED"})
        if key == "upload":
            return httpx.Response(200, json={"fileId": "FILE-1", "status": "UPLOADED"})
        if key == "finalize":
            return httpx.Response(200, json={"submissionId": "SUB-1", "esgCoreId": "CORE-1"})
        if key == "ack" and self.ack_payload is not None:
            return httpx.Response(200, json=self.ack_payload)
        return httpx.Response(404, json={"message": "No acknowledgment available"})


def _operation(request: httpx.Request) -> str:
    path = request.url.path
    if path.endswith("/oauth2/token"):
        return "token"
    if path.endswith("/files"):
        return "upload"
    if path.endswith("/finalize"):
        return "finalize"
    if path.endswith("/acknowledgment") or "/acknowledgments/" in path:
        return "ack"
    if path.endswith("/submissions"):
        return "create"
    return "unknown"


def build_client(gateway: FakeGateway, *, clock=None, credential_store=None) -> EsgClient:
    http_client = httpx.AsyncClient(transport=gateway.transport())
    kwargs = {"clock": clock} if clock is not None else {}
    auth = AuthManager(
        credential_store or SettingsCredentialStore(client_id="client-id", secret_key="secret"),
        http_client,
        endpoints=ENDPOINTS,
        **kwargs,
    )
    return EsgClient(auth, http_client, endpoints=ENDPOINTS)


class FakeStore:
    def __init__(self) -> None:
        self.cases: dict[str, CaseSnapshot] = {}
        self.attempts: list[AttemptRecord] = []
        self.history: list[dict[str, Any]] = []

    def add_case(self, case_id: str, status: str = CaseStatus.EXPORTED, **fields: Any) -> CaseSnapshot:
        defaults = {
            "safety_report_id": f"US-{case_id}",
            "primary_reaction": "Headache",
            "primary_drug": "Aspirin",
        }
        case = CaseSnapshot(id=case_id, status=str(status), **{**defaults, **fields})
        self.cases[case_id] = case
        return case

    def events(self, case_id: str, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.history if e["case_id"] == case_id and e["event_type"] == event_type]

    async def get_case(self, case_id: str) -> CaseSnapshot | None:
        case = self.cases.get(case_id)
        return dataclasses.replace(case) if case is not None else None

    async def update_case(self, case_id: str, **fields: Any) -> None:
        case = self.cases[case_id]
        for key, value in fields.items():
            setattr(case, key, value)

    async def historical_attempt_count(self, case_id: str) -> int:
        return sum(1 for a in self.attempts if a.case_id == case_id)

    async def create_attempt(self, case_id: str, attempt_number: int, environment: str) -> AttemptRecord:
        record = AttemptRecord(
            id=f"attempt-{len(self.attempts) + 1}",
            case_id=case_id,
            attempt_number=attempt_number,
            environment=environment,
            status="in_progress",
        )
        self.attempts.append(record)
        return dataclasses.replace(record)

    async def update_attempt(self, attempt_id: str, **fields: Any) -> None:
        record = next(a for a in self.attempts if a.id == attempt_id)
        for key, value in fields.items():
            setattr(record, key, value)

    async def latest_attempt(self, case_id: str) -> AttemptRecord | None:
        rows = [a for a in self.attempts if a.case_id == case_id]
        return max(rows, key=lambda a: a.attempt_number) if rows else None

    async def list_attempts(self, case_id: str) -> list[AttemptRecord]:
        return [a for a in self.attempts if a.case_id == case_id]

    async def append_history_event(
        self, case_id: str, event_type: str, details: dict[str, Any], notes: str | None = None
    ) -> None:
        self.history.append({
            "case_id": case_id,
            "event_type": str(event_type),
            "details": details,
            "notes": notes,
        })

    async def cases_awaiting_ack(self) -> list[AwaitingAckCase]:
        return [
            AwaitingAckCase(
                case_id=c.id,
                esg_submission_id=c.esg_submission_id,
                esg_core_id=c.esg_core_id,
                last_submitted_at=c.last_submitted_at,
            )
            for c in self.cases.values()
            if c.status == CaseStatus.SUBMITTED and c.esg_submission_id
        ]


class FakeWorkflow:
    def __init__(self, store: FakeStore, validation_errors: list[str] | None = None) -> None:
        self._store = store
        self.validation_errors = validation_errors or []
        self.transitions: list[tuple[str, str, str]] = []

    async def transition(self, case_id: str, target_status: str, details=None) -> TransitionResult:
        case = self._store.cases[case_id]
        from_status = case.status
        if from_status == target_status:
            return TransitionResult(success=True, from_status=from_status, to_status=str(target_status))
        if not is_valid_transition(from_status, target_status):
            return TransitionResult(
                success=False,
                error=f"Invalid transition from '{from_status}' to '{target_status}'",
                from_status=from_status,
            )
        case.status = str(target_status)
        self.transitions.append((case_id, from_status, str(target_status)))
        return TransitionResult(success=True, from_status=from_status, to_status=str(target_status))

    async def can_enter_submission(self, case_id: str) -> ValidationOutcome:
        return ValidationOutcome(ok=not self.validation_errors, validation_errors=list(self.validation_errors))


class FakeDocuments:
    def __init__(self, content: bytes | None = XML_DOCUMENT, errors: list[str] | None = None) -> None:
        self.content = content
        self.errors = errors or []
        self.generated: list[str] = []

    async def generate(self, case_id: str) -> GeneratedDocument:
        self.generated.append(case_id)
        if self.content is None:
            return GeneratedDocument(success=False, errors=self.errors)
        return GeneratedDocument(success=True, content=self.content, filename=f"{case_id}_E2B_R3.xml")


class StaticSettingsProvider:
    def __init__(self, **overrides: Any) -> None:
        base = {"environment": EsgEnvironment.TEST, "is_configured": True}
        self.settings = EsgApiSettings(**{**base, **overrides})

    async def load(self) -> EsgApiSettings:
        return self.settings

    async def save(self, updates: dict[str, Any]) -> EsgApiSettings:
        self.settings = EsgApiSettings.model_validate({**self.settings.model_dump(), **updates})
        return self.settings


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, channel: str, payload: dict[str, Any]) -> None:
        self.events.append((channel, payload))

    def on(self, channel: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == channel]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
