"""
Simulated ESG gateway for the Demo environment.

DemoTransport is an httpx transport: AsyncClient routes requests for the
demo host here instead of the network, so the pipeline runs the exact same
code paths in Demo as against the real gateway.

Acknowledgments are derived from the time elapsed since finalize rather
than from timers, so nothing keeps running in the background.
"""

from __future__ import annotations

import asyncio
import json
import random
import re
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import httpx

from esg_pipeline.core.config import settings
from esg_pipeline.core.constants import AckType, DemoScenario, DemoSpeed
from esg_pipeline.core.logging import get_logger

logger = get_logger(__name__)

SPEED_MULTIPLIERS = {
    DemoSpeed.REALTIME: 1.0,
    DemoSpeed.FAST: 0.1,
    DemoSpeed.INSTANT: 0.001,
}

# Simulated latency per operation (seconds, before the speed multiplier)
OPERATION_DELAYS = {
    "authenticate": 0.5,
    "create_submission": 0.8,
    "upload": 1.5,
    "finalize": 1.0,
    "get_status": 0.3,
}

DEFAULT_ACK_DELAYS = (5.0, 10.0, 15.0)     # ACK1, ACK2, ACK3 (cumulative offsets)
SLOW_PROCESSING_FACTOR = 3

NACK_ERROR_CATALOGUE = {
    "E001": {"code": "E001", "message": "XML Schema Validation Error"},
    "E002": {"code": "E002", "message": "Missing Required Element", "field": "primarysource"},
    "BR-001": {
        "code": "BR-001",
        "message": "Invalid MedDRA Term",
        "field": "reaction/reactionmeddraversionllt",
    },
    "BR-042": {"code": "BR-042", "message": "Duplicate Safety Report"},
    "BR-105": {
        "code": "BR-105",
        "message": "Invalid Date Sequence",
        "field": "patient/drug/drugstartdate",
    },
}

ACK_DESCRIPTIONS = {
    AckType.ACK1: "Submission received by gateway",
    AckType.ACK2: "XML validated - syntactically correct",
    AckType.ACK3: "Submission accepted and loaded into FAERS database",
    AckType.NACK: "Submission rejected - see error details",
}

# Failure windows for the one-shot transient scenarios (seconds)
NETWORK_ERROR_WINDOW = 10.0
RATE_LIMIT_WINDOW = 5.0


@dataclass
class DemoSubmission:
    submission_id: str
    scenario: DemoScenario
    created_at: float
    status: str = "created"
    esg_core_id: str | None = None
    finalized_at: float | None = None
    fda_core_id: str | None = None


@dataclass
class DemoConfig:
    scenario: DemoScenario = DemoScenario.HAPPY_PATH
    speed: DemoSpeed = DemoSpeed.REALTIME
    ack_delays: tuple[float, float, float] = DEFAULT_ACK_DELAYS

    @property
    def multiplier(self) -> float:
        return SPEED_MULTIPLIERS[self.speed]


@dataclass
class _AckState:
    ack_type: AckType
    reached_at: float
    errors: list[dict] = field(default_factory=list)


class DemoTransport(httpx.AsyncBaseTransport):
    """In-process stand-in for the ESG token endpoint and submission API."""

    _ROUTES = [
        ("POST", re.compile(r"/esg/oauth2/token$"), "_token"),
        ("POST", re.compile(r"/esg/v1/submissions$"), "_create"),
        ("POST", re.compile(r"/esg/v1/submissions/(?P<sid>[^/]+)/files$"), "_upload"),
        ("POST", re.compile(r"/esg/v1/submissions/(?P<sid>[^/]+)/finalize$"), "_finalize"),
        ("GET", re.compile(r"/esg/v1/submissions/(?P<sid>[^/]+)/acknowledgment$"), "_status"),
        ("GET", re.compile(r"/esg/v1/acknowledgments/(?P<core>[^/]+)$"), "_ack_by_core"),
    ]

    def __init__(
        self,
        config: DemoConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or DemoConfig(
            scenario=DemoScenario(settings.ESG_DEMO_SCENARIO),
            speed=DemoSpeed(settings.ESG_DEMO_SPEED),
        )
        self._clock = clock
        self._sleep = sleep
        self._submissions: dict[str, DemoSubmission] = {}
        self._failure_windows: dict[str, float] = {}

    # ─── Configuration ─────────────────────────────────

    def configure(self, *, scenario: str | None = None, speed: str | None = None) -> DemoConfig:
        if scenario is not None:
            self.config.scenario = DemoScenario(scenario)
        if speed is not None:
            self.config.speed = DemoSpeed(speed)
        return self.config

    def reset(self) -> int:
        """Forget every simulated submission; returns how many were cleared."""
        count = len(self._submissions)
        self._submissions.clear()
        self._failure_windows.clear()
        return count

    def get_submission(self, submission_id: str) -> DemoSubmission | None:
        return self._submissions.get(submission_id)

    # ─── Transport ─────────────────────────────────────

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        path = request.url.path

        for method, pattern, handler_name in self._ROUTES:
            match = pattern.search(path)
            if request.method == method and match:
                handler = getattr(self, handler_name)
                return await handler(request, **match.groupdict())

        return _json(404, {"error": f"No demo route for {request.method} {path}"})

    # ─── Handlers ──────────────────────────────────────

    async def _token(self, request: httpx.Request) -> httpx.Response:
        await self._delay("authenticate")
        return _json(200, {
            "access_token": f"demo-token-{uuid.uuid4()}",
            "token_type": "Bearer",
            "expires_in": 3600,
        })

    async def _create(self, request: httpx.Request) -> httpx.Response:
        await self._delay("create_submission")
        scenario = self.config.scenario
        # Fails per submission, not at the token endpoint: tokens are cached.
        if scenario == DemoScenario.NETWORK_ERROR and self._fail_once("network", NETWORK_ERROR_WINDOW):
            raise httpx.ConnectError("Network connection failed (simulated)", request=request)
        if scenario == DemoScenario.RATE_LIMITED and self._fail_once("create", RATE_LIMIT_WINDOW):
            return _json(429, {"message": "Rate limit exceeded. Please retry after 5 seconds."})

        now = self._clock()
        submission_id = f"DEMO-SUB-{int(now * 1000)}-{uuid.uuid4().hex[:6].upper()}"
        self._submissions[submission_id] = DemoSubmission(
            submission_id=submission_id, scenario=scenario, created_at=now,
        )
        logger.debug("Demo submission created", submission_id=submission_id, scenario=scenario)

        return _json(201, {
            "submissionId": submission_id,
            "status": "CREATED",
            "createdAt": _iso(now),
        })

    async def _upload(self, request: httpx.Request, sid: str) -> httpx.Response:
        await self._delay("upload")
        record = self._submissions.get(sid)
        if record is None:
            return _json(404, {"message": f"Submission {sid} not found"})

        filename, content = _multipart_file(request)
        stripped = content.lstrip()
        if not (stripped.startswith(b"<?xml") or stripped.startswith(b"<ich")):
            return _json(400, {"message": "Invalid XML format"})

        record.status = "uploaded"
        return _json(200, {
            "fileId": f"DEMO-FILE-{int(self._clock() * 1000)}",
            "filename": filename,
            "size": len(content),
            "status": "UPLOADED",
        })

    async def _finalize(self, request: httpx.Request, sid: str) -> httpx.Response:
        await self._delay("finalize")
        record = self._submissions.get(sid)
        if record is None:
            return _json(404, {"message": f"Submission {sid} not found"})
        if record.status != "uploaded":
            return _json(400, {"message": f"Cannot finalize submission in status: {record.status}"})

        record.esg_core_id = f"DEMO-CORE-{uuid.uuid4()}"
        record.status = "finalized"
        record.finalized_at = self._clock()

        return _json(200, {
            "submissionId": sid,
            "status": "FINALIZED",
            "esgCoreId": record.esg_core_id,
        })

    async def _status(self, request: httpx.Request, sid: str) -> httpx.Response:
        await self._delay("get_status")
        record = self._submissions.get(sid)
        if record is None:
            return _json(404, {"message": f"Submission {sid} not found"})
        return self._ack_response(record)

    async def _ack_by_core(self, request: httpx.Request, core: str) -> httpx.Response:
        await self._delay("get_status")
        record = next(
            (r for r in self._submissions.values() if r.esg_core_id == core), None
        )
        if record is None:
            return _json(404, {"message": "No acknowledgment available"})
        return self._ack_response(record)

    # ─── Acknowledgment progression ────────────────────

    def _ack_response(self, record: DemoSubmission) -> httpx.Response:
        state = self._current_ack(record)
        if state is None:
            return _json(404, {"message": "No acknowledgment available"})

        return _json(200, {
            "submissionId": record.submission_id,
            "acknowledgmentType": state.ack_type.value,
            "fdaCoreId": record.fda_core_id,
            "timestamp": _iso(state.reached_at),
            "details": ACK_DESCRIPTIONS[state.ack_type],
            "errors": state.errors,
        })

    def _current_ack(self, record: DemoSubmission) -> _AckState | None:
        if record.finalized_at is None:
            return None

        factor = self.config.multiplier
        if record.scenario == DemoScenario.SLOW_PROCESSING:
            factor *= SLOW_PROCESSING_FACTOR
        ack1, ack2, ack3 = self.config.ack_delays
        offsets = (ack1 * factor, (ack1 + ack2) * factor, (ack1 + ack2 + ack3) * factor)

        # Terminal outcome at each stage for the record's scenario.
        if record.scenario == DemoScenario.VALIDATION_ERROR:
            stages = [(AckType.ACK1, None), (AckType.NACK, ["E001", "E002"])]
        elif record.scenario == DemoScenario.BUSINESS_RULE_ERROR:
            stages = [(AckType.ACK1, None), (AckType.ACK2, None), (AckType.NACK, ["BR-001", "BR-042"])]
        else:
            stages = [(AckType.ACK1, None), (AckType.ACK2, None), (AckType.ACK3, None)]

        elapsed = self._clock() - record.finalized_at
        current = None
        for (ack_type, error_codes), offset in zip(stages, offsets):
            if elapsed < offset:
                break
            current = _AckState(
                ack_type=ack_type,
                reached_at=record.finalized_at + offset,
                errors=[NACK_ERROR_CATALOGUE[code] for code in error_codes or []],
            )

        if current is None:
            return None
        if current.ack_type == AckType.NACK:
            record.status = "rejected"
        elif current.ack_type == AckType.ACK3:
            record.status = "complete"
            if record.fda_core_id is None:
                stamp = datetime.fromtimestamp(current.reached_at, timezone.utc).strftime("%Y%m%d")
                record.fda_core_id = f"DEMO-FDA-{stamp}-{random.randint(0, 9999):04d}"
        return current

    # ─── Helpers ───────────────────────────────────────

    async def _delay(self, operation: str) -> None:
        await self._sleep(OPERATION_DELAYS[operation] * self.config.multiplier)

    def _fail_once(self, key: str, window: float) -> bool:
        """True on the first call, then False until `window` seconds have passed."""
        now = self._clock()
        expires = self._failure_windows.get(key)
        if expires is None or expires < now:
            self._failure_windows[key] = now + window
            return True
        return False


def _json(status_code: int, payload: dict) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode("utf-8"),
        headers={"content-type": "application/json"},
    )


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, timezone.utc).isoformat()


def _multipart_file(request: httpx.Request) -> tuple[str, bytes]:
    """Pull the `file` part out of a multipart/form-data body."""
    content_type = request.headers.get("content-type", "")
    match = re.search(r"boundary=\"?([^\";]+)\"?", content_type)
    if not match:
        return "", b""

    boundary = b"--" + match.group(1).encode("latin-1")
    for part in request.content.split(boundary):
        head, sep, body = part.partition(b"\r\n\r\n")
        if not sep or b'name="file"' not in head:
            continue
        name_match = re.search(rb'filename="([^"]*)"', head)
        filename = name_match.group(1).decode("utf-8", "replace") if name_match else ""
        return filename, body.rstrip(b"\r\n")
    return "", b""
