from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from esg_pipeline.core.constants import ACK_RECEIVED_CHANNEL, CaseStatus, HistoryEventType
from esg_pipeline.submission.poller import AcknowledgmentPoller
from tests.fakes import (
    FakeGateway,
    FakeStore,
    FakeWorkflow,
    RecordingPublisher,
    StaticSettingsProvider,
    build_client,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _Harness:
    def __init__(self, gateway: FakeGateway | None = None, **settings) -> None:
        self.gateway = gateway or FakeGateway()
        self.store = FakeStore()
        self.workflow = FakeWorkflow(self.store)
        self.publisher = RecordingPublisher()
        self.settings = StaticSettingsProvider(**settings)
        self.poller = AcknowledgmentPoller(
            build_client(self.gateway),
            store=self.store,
            workflow=self.workflow,
            settings_provider=self.settings,
            publisher=self.publisher,
            clock=lambda: NOW,
        )

    async def submitted_case(self, case_id: str, submission_id: str, hours_ago: float = 1) -> None:
        self.store.add_case(
            case_id,
            status=CaseStatus.SUBMITTED,
            esg_submission_id=submission_id,
            esg_core_id=f"CORE-{submission_id}",
            last_submitted_at=NOW - timedelta(hours=hours_ago),
        )
        record = await self.store.create_attempt(case_id, 1, "Test")
        await self.store.update_attempt(record.id, status="success", esg_submission_id=submission_id)


def _ack(ack_type: str, **extra) -> dict:
    return {
        "submissionId": "SUB-1",
        "acknowledgmentType": ack_type,
        "timestamp": "2026-03-01T11:30:00+00:00",
        **extra,
    }


@pytest.mark.asyncio
async def test_nack_moves_case_to_submission_failed() -> None:
    gateway = FakeGateway()
    gateway.ack_payload = _ack(
        "NACK",
        errors=[
            {"code": "E001", "message": "XML Schema Validation Error"},
            {"code": "E002", "message": "Missing Required Element", "field": "primarysource"},
        ],
    )
    h = _Harness(gateway)
    await h.submitted_case("case-1", "SUB-1")

    errors = await h.poller.poll_once()

    assert errors == []
    case = h.store.cases["case-1"]
    assert case.status == CaseStatus.SUBMISSION_FAILED
    assert case.api_last_error == "NACK: XML Schema Validation Error; Missing Required Element"

    attempt = h.store.attempts[0]
    assert attempt.ack_type == "NACK"
    assert attempt.ack_timestamp == "2026-03-01T11:30:00+00:00"
    assert [e["code"] for e in attempt.ack_errors] == ["E001", "E002"]

    (event,) = h.store.events("case-1", HistoryEventType.NACK_RECEIVED)
    assert event["notes"].startswith("NACK received:")

    (payload,) = h.publisher.on(ACK_RECEIVED_CHANNEL)
    assert payload["case_id"] == "case-1"
    assert payload["acknowledgment"]["acknowledgment_type"] == "NACK"
    assert h.poller.state.last_poll_time == NOW


@pytest.mark.asyncio
async def test_ack_moves_case_to_acknowledged() -> None:
    gateway = FakeGateway()
    gateway.ack_payload = _ack("ACK3", fdaCoreId="FDA-2026-0042")
    h = _Harness(gateway)
    await h.submitted_case("case-1", "SUB-1")

    await h.poller.poll_once()

    case = h.store.cases["case-1"]
    assert case.status == CaseStatus.ACKNOWLEDGED
    assert case.fda_case_number == "FDA-2026-0042"
    assert case.acknowledgment_date == "2026-03-01T11:30:00+00:00"
    assert h.store.attempts[0].ack_fda_core_id == "FDA-2026-0042"
    assert len(h.store.events("case-1", HistoryEventType.ACK_RECEIVED)) == 1
    assert len(h.publisher.on(ACK_RECEIVED_CHANNEL)) == 1


@pytest.mark.asyncio
async def test_pending_acknowledgment_changes_nothing() -> None:
    h = _Harness()
    await h.submitted_case("case-1", "SUB-1")

    errors = await h.poller.poll_once()

    assert errors == []
    assert h.gateway.count("ack") == 1
    assert h.store.cases["case-1"].status == CaseStatus.SUBMITTED
    assert h.publisher.events == []


@pytest.mark.asyncio
async def test_timed_out_case_is_reported_but_not_transitioned() -> None:
    h = _Harness(polling_timeout_hours=48)
    await h.submitted_case("case-1", "SUB-1", hours_ago=49)

    errors = await h.poller.poll_once()

    assert errors == ["Case case-1: polling timeout exceeded"]
    assert h.gateway.count("ack") == 0
    assert h.store.cases["case-1"].status == CaseStatus.SUBMITTED
    (event,) = h.store.events("case-1", HistoryEventType.API_SUBMIT_FAILED)
    assert event["details"] == {"reason": "Polling timeout exceeded"}
    assert h.poller.state.recent_errors == errors


@pytest.mark.asyncio
async def test_one_failing_case_does_not_stop_the_cycle() -> None:
    gateway = FakeGateway()
    responses = {
        "SUB-1": httpx.Response(500, json={"message": "Internal error"}),
        "SUB-2": httpx.Response(200, json=_ack("ACK1")),
    }

    def by_submission(request: httpx.Request) -> httpx.Response:
        return responses[request.url.path.split("/")[-2]]

    gateway.queue("ack", by_submission, by_submission)
    h = _Harness(gateway)
    await h.submitted_case("case-1", "SUB-1", hours_ago=2)
    await h.submitted_case("case-2", "SUB-2", hours_ago=1)

    errors = await h.poller.poll_once()

    assert errors == ["Case case-1: Internal error"]
    assert h.store.cases["case-1"].status == CaseStatus.SUBMITTED
    assert h.store.cases["case-2"].status == CaseStatus.ACKNOWLEDGED


@pytest.mark.asyncio
async def test_check_now_without_submission() -> None:
    h = _Harness()
    h.store.add_case("case-1")

    result = await h.poller.check_now("case-1")

    assert not result.has_acknowledgment
    assert result.error == "No API submission found for this case"


@pytest.mark.asyncio
async def test_check_now_ignores_polling_timeout() -> None:
    gateway = FakeGateway()
    gateway.ack_payload = _ack("ACK2")
    h = _Harness(gateway, polling_timeout_hours=1)
    await h.submitted_case("case-1", "SUB-1", hours_ago=100)

    result = await h.poller.check_now("case-1")

    assert result.has_acknowledgment
    assert result.acknowledgment["acknowledgment_type"] == "ACK2"
    assert h.store.cases["case-1"].status == CaseStatus.ACKNOWLEDGED


@pytest.mark.asyncio
async def test_start_requires_configuration_outside_demo() -> None:
    h = _Harness(environment="Test", is_configured=False)
    assert await h.poller.start() is False
    assert not h.poller.state.is_active


@pytest.mark.asyncio
async def test_loop_never_overlaps_cycles() -> None:
    h = _Harness(environment="Demo", is_configured=False, polling_interval_minutes=5)
    sleeps: list[float] = []
    finished = asyncio.Event()
    running = False
    cycles = 0

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if len(sleeps) == 3:
            h.poller.state.is_active = False
            finished.set()
        await asyncio.sleep(0)

    async def fake_poll_once() -> list[str]:
        nonlocal running, cycles
        assert not running
        running = True
        await asyncio.sleep(0)
        cycles += 1
        running = False
        return []

    h.poller._sleep = fake_sleep
    h.poller.poll_once = fake_poll_once

    assert await h.poller.start() is True
    assert await h.poller.start() is False
    await asyncio.wait_for(finished.wait(), timeout=1)
    await h.poller.stop()

    assert sleeps == [300, 300, 300]
    assert cycles == 2
    status = await h.poller.status()
    assert not status.is_active
    assert status.next_poll_time is None


@pytest.mark.asyncio
async def test_set_interval_persists_setting() -> None:
    h = _Harness()
    await h.poller.set_interval(15)
    assert h.settings.settings.polling_interval_minutes == 15


@pytest.mark.asyncio
async def test_status_counts_cases_being_polled() -> None:
    h = _Harness()
    await h.submitted_case("case-1", "SUB-1")
    await h.submitted_case("case-2", "SUB-2")
    h.store.add_case("case-3")

    status = await h.poller.status()

    assert status.cases_being_polled == 2
    assert status.to_dict()["is_active"] is False
