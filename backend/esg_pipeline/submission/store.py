"""
SqlSubmissionStore — SubmissionStore backed by the async ORM.

Every operation runs in its own session and commits before returning, so
a crash mid-run never loses an attempt row that was already reported.
"""

from __future__ import annotations

from typing import Any

from esg_pipeline.db.models.base import as_utc
from esg_pipeline.repositories import cases as cases_repo
from esg_pipeline.repositories import submission_attempts as attempts_repo
from esg_pipeline.repositories import submission_history as history_repo
from esg_pipeline.submission.contracts import AttemptRecord, AwaitingAckCase, CaseSnapshot


def case_to_snapshot(case) -> CaseSnapshot:
    return CaseSnapshot(
        id=case.id,
        status=case.status,
        safety_report_id=case.safety_report_id,
        patient_initials=case.patient_initials,
        primary_reaction=case.primary_reaction,
        primary_drug=case.primary_drug,
        esg_submission_id=case.esg_submission_id,
        esg_core_id=case.esg_core_id,
        last_submitted_at=as_utc(case.last_submitted_at),
        api_attempt_count=case.api_attempt_count or 0,
        api_last_error=case.api_last_error,
        fda_case_number=case.fda_case_number,
        acknowledgment_date=case.acknowledgment_date,
    )


def attempt_to_record(attempt) -> AttemptRecord:
    return AttemptRecord(
        id=attempt.id,
        case_id=attempt.case_id,
        attempt_number=attempt.attempt_number,
        environment=attempt.environment,
        status=attempt.status,
        started_at=as_utc(attempt.started_at),
        completed_at=as_utc(attempt.completed_at),
        esg_submission_id=attempt.esg_submission_id,
        esg_core_id=attempt.esg_core_id,
        error=attempt.error,
        error_category=attempt.error_category,
        http_status_code=attempt.http_status_code,
        ack_type=attempt.ack_type,
        ack_timestamp=attempt.ack_timestamp,
        ack_fda_core_id=attempt.ack_fda_core_id,
        ack_errors=attempt.ack_errors,
    )


class SqlSubmissionStore:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def get_case(self, case_id: str) -> CaseSnapshot | None:
        async with self._session_factory() as db:
            case = await cases_repo.get_case_by_id(db, case_id)
            return case_to_snapshot(case) if case is not None else None

    async def update_case(self, case_id: str, **fields: Any) -> None:
        async with self._session_factory() as db:
            await cases_repo.update_case(db, case_id, **fields)
            await db.commit()

    async def historical_attempt_count(self, case_id: str) -> int:
        async with self._session_factory() as db:
            return await attempts_repo.count_attempts(db, case_id)

    async def create_attempt(self, case_id: str, attempt_number: int, environment: str) -> AttemptRecord:
        async with self._session_factory() as db:
            attempt = await attempts_repo.create_attempt(
                db, case_id=case_id, attempt_number=attempt_number, environment=environment,
            )
            await db.commit()
            return attempt_to_record(attempt)

    async def update_attempt(self, attempt_id: str, **fields: Any) -> None:
        async with self._session_factory() as db:
            await attempts_repo.update_attempt(db, attempt_id, **fields)
            await db.commit()

    async def latest_attempt(self, case_id: str) -> AttemptRecord | None:
        async with self._session_factory() as db:
            attempt = await attempts_repo.get_latest_attempt(db, case_id)
            return attempt_to_record(attempt) if attempt is not None else None

    async def list_attempts(self, case_id: str) -> list[AttemptRecord]:
        async with self._session_factory() as db:
            rows = await attempts_repo.list_attempts_for_case(db, case_id)
            return [attempt_to_record(row) for row in rows]

    async def append_history_event(
        self, case_id: str, event_type: str, details: dict[str, Any], notes: str | None = None
    ) -> None:
        async with self._session_factory() as db:
            await history_repo.add_history_entry(
                db, case_id=case_id, event_type=event_type, details=details, notes=notes,
            )
            await db.commit()

    async def cases_awaiting_ack(self) -> list[AwaitingAckCase]:
        async with self._session_factory() as db:
            rows = await cases_repo.list_cases_awaiting_ack(db)
            return [
                AwaitingAckCase(
                    case_id=row.id,
                    esg_submission_id=row.esg_submission_id,
                    esg_core_id=row.esg_core_id,
                    last_submitted_at=as_utc(row.last_submitted_at),
                )
                for row in rows
            ]
