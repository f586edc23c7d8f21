from __future__ import annotations

from datetime import datetime, timezone

import pytest

from esg_pipeline.core.constants import CaseStatus, DemoSpeed, EsgEnvironment, HistoryEventType
from esg_pipeline.repositories import app_settings as settings_repo
from esg_pipeline.repositories import cases as cases_repo
from esg_pipeline.repositories import submission_attempts as attempts_repo
from esg_pipeline.repositories import submission_history as history_repo
from esg_pipeline.submission.settings import (
    DatabaseSettingsProvider,
    EsgApiSettings,
    merge_settings,
)
from esg_pipeline.submission.store import SqlSubmissionStore
from esg_pipeline.submission.workflow import CaseWorkflow, is_valid_transition


async def _create_case(session_factory, **fields) -> str:
    values = {
        "status": CaseStatus.EXPORTED.value,
        "safety_report_id": "US-0001",
        "primary_reaction": "Nausea",
        "primary_drug": "Metformin",
        **fields,
    }
    async with session_factory() as db:
        case = await cases_repo.create_case(db, **values)
        await db.commit()
        return case.id


# ─── Workflow ─────────────────────────────────────────────

def test_transition_table() -> None:
    assert is_valid_transition("Exported", "Submitting")
    assert is_valid_transition("Submitting", "Submitted")
    assert is_valid_transition("Submitted", "Acknowledged")
    assert is_valid_transition("Submission Failed", "Submitting")
    assert not is_valid_transition("Acknowledged", "Submitting")
    assert not is_valid_transition("Submitted", "Submitting")
    assert not is_valid_transition("Bogus", "Draft")


@pytest.mark.asyncio
async def test_workflow_transition_writes_status_changed_history(session_factory) -> None:
    case_id = await _create_case(session_factory)
    workflow = CaseWorkflow(session_factory)

    result = await workflow.transition(case_id, CaseStatus.SUBMITTING, {"method": "api"})
    assert result.success
    assert result.from_status == "Exported"

    again = await workflow.transition(case_id, CaseStatus.SUBMITTING)
    assert again.success

    invalid = await workflow.transition(case_id, CaseStatus.ACKNOWLEDGED)
    assert not invalid.success
    assert "Invalid transition" in invalid.error

    async with session_factory() as db:
        case = await cases_repo.get_case_by_id(db, case_id)
        entries = await history_repo.list_history_for_case(
            db, case_id, event_type=HistoryEventType.STATUS_CHANGED.value
        )
    assert case.status == "Submitting"
    assert len(entries) == 1
    assert entries[0].details == {"from": "Exported", "to": "Submitting", "method": "api"}


@pytest.mark.asyncio
async def test_can_enter_submission_lists_missing_fields(session_factory) -> None:
    case_id = await _create_case(
        session_factory, status=CaseStatus.DRAFT.value, safety_report_id=None, primary_drug=None,
    )
    outcome = await CaseWorkflow(session_factory).can_enter_submission(case_id)

    assert not outcome.ok
    assert outcome.validation_errors == [
        "Safety report ID is required",
        "At least one suspect drug is required",
    ]


# ─── Store ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_store_round_trips_attempts_and_cases(session_factory) -> None:
    case_id = await _create_case(session_factory)
    store = SqlSubmissionStore(session_factory)

    first = await store.create_attempt(case_id, 1, "Test")
    await store.update_attempt(first.id, status="failed", error="boom", error_category="server_error")
    second = await store.create_attempt(case_id, 2, "Test")
    await store.update_attempt(second.id, status="success", esg_submission_id="SUB-9")

    assert await store.historical_attempt_count(case_id) == 2
    latest = await store.latest_attempt(case_id)
    assert latest.attempt_number == 2
    assert latest.started_at.tzinfo is not None

    submitted_at = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)
    await store.update_case(
        case_id, status="Submitted", esg_submission_id="SUB-9", last_submitted_at=submitted_at,
    )
    awaiting = await store.cases_awaiting_ack()
    assert [a.case_id for a in awaiting] == [case_id]
    assert awaiting[0].last_submitted_at == submitted_at


@pytest.mark.asyncio
async def test_update_case_rejects_unowned_columns(session_factory) -> None:
    case_id = await _create_case(session_factory)
    async with session_factory() as db:
        with pytest.raises(ValueError):
            await cases_repo.update_case(db, case_id, safety_report_id="changed")


@pytest.mark.asyncio
async def test_deleted_cases_are_invisible(session_factory) -> None:
    case_id = await _create_case(
        session_factory, status="Submitted", esg_submission_id="SUB-1",
        deleted_at=datetime.now(timezone.utc),
    )
    store = SqlSubmissionStore(session_factory)
    assert await store.get_case(case_id) is None
    assert await store.cases_awaiting_ack() == []


@pytest.mark.asyncio
async def test_failed_and_acknowledged_listings(session_factory) -> None:
    failed_id = await _create_case(session_factory)
    acked_id = await _create_case(session_factory, safety_report_id="US-0002")
    store = SqlSubmissionStore(session_factory)

    old = await store.create_attempt(failed_id, 1, "Test")
    await store.update_attempt(old.id, status="success")
    newest = await store.create_attempt(failed_id, 2, "Test")
    await store.update_attempt(newest.id, status="failed")

    acked = await store.create_attempt(acked_id, 1, "Test")
    await store.update_attempt(acked.id, status="success", ack_type="ACK3")

    async with session_factory() as db:
        failed = await attempts_repo.list_failed_submissions(db)
        recent = await attempts_repo.list_recent_acknowledgments(db)

    assert [(a.case_id, a.attempt_number) for a in failed] == [(failed_id, 2)]
    assert [a.case_id for a in recent] == [acked_id]


# ─── Settings ─────────────────────────────────────────────

def test_merge_drops_invalid_stored_values() -> None:
    defaults = EsgApiSettings()
    merged = merge_settings(
        defaults,
        {"polling_interval_minutes": "500", "max_total_attempts": "7", "unknown_key": "x"},
    )
    assert merged.polling_interval_minutes == defaults.polling_interval_minutes
    assert merged.max_total_attempts == 7


@pytest.mark.asyncio
async def test_settings_provider_persists_prefixed_keys(session_factory) -> None:
    provider = DatabaseSettingsProvider(session_factory, defaults=EsgApiSettings())

    saved = await provider.save(
        {"environment": "Demo", "polling_interval_minutes": 10, "is_configured": True,
         "demo_speed": "fast"}
    )
    assert saved.environment == EsgEnvironment.DEMO

    async with session_factory() as db:
        assert await settings_repo.get_setting(db, "esg_api_polling_interval_minutes") == "10"
        assert await settings_repo.get_setting(db, "esg_api_is_configured") == "true"
        assert await settings_repo.get_setting(db, "esg_api_environment") == "Demo"

    loaded = await provider.load()
    assert loaded.environment == EsgEnvironment.DEMO
    assert loaded.polling_interval_minutes == 10
    assert loaded.is_configured is True
    assert loaded.demo_speed == DemoSpeed.FAST
    assert loaded.is_demo_mode and loaded.can_poll


@pytest.mark.asyncio
async def test_settings_provider_rejects_unknown_and_out_of_range(session_factory) -> None:
    provider = DatabaseSettingsProvider(session_factory, defaults=EsgApiSettings())

    with pytest.raises(ValueError):
        await provider.save({"not_a_setting": 1})
    with pytest.raises(ValueError):
        await provider.save({"max_automatic_retries": 11})

    async with session_factory() as db:
        assert await settings_repo.get_settings_by_prefix(db, "esg_api_") == {}
