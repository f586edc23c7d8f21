"""
CaseWorkflow — the case status state machine, as far as submission needs it.

Every successful transition writes a `status_changed` history event in the
same transaction as the status update.
"""

from __future__ import annotations

from typing import Any

from esg_pipeline.core.constants import CaseStatus, HistoryEventType
from esg_pipeline.core.logging import get_logger
from esg_pipeline.repositories import cases as cases_repo
from esg_pipeline.repositories import submission_history as history_repo
from esg_pipeline.submission.contracts import TransitionResult, ValidationOutcome

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[CaseStatus, set[CaseStatus]] = {
    CaseStatus.DRAFT: {
        CaseStatus.READY_FOR_EXPORT, CaseStatus.SUBMITTING, CaseStatus.SUBMISSION_FAILED,
    },
    CaseStatus.READY_FOR_EXPORT: {
        CaseStatus.EXPORTED, CaseStatus.DRAFT, CaseStatus.SUBMITTING, CaseStatus.SUBMISSION_FAILED,
    },
    CaseStatus.EXPORTED: {
        CaseStatus.SUBMITTED, CaseStatus.DRAFT, CaseStatus.SUBMITTING, CaseStatus.SUBMISSION_FAILED,
    },
    CaseStatus.SUBMITTING: {CaseStatus.SUBMITTED, CaseStatus.SUBMISSION_FAILED},
    CaseStatus.SUBMITTED: {
        CaseStatus.ACKNOWLEDGED, CaseStatus.REJECTED, CaseStatus.SUBMISSION_FAILED,
    },
    CaseStatus.ACKNOWLEDGED: set(),
    CaseStatus.SUBMISSION_FAILED: {CaseStatus.SUBMITTING, CaseStatus.DRAFT},
    CaseStatus.REJECTED: {CaseStatus.DRAFT},
}

# Fields a case needs before it may leave Draft for submission
REQUIRED_FOR_SUBMISSION = {
    "safety_report_id": "Safety report ID is required",
    "primary_reaction": "At least one reaction is required",
    "primary_drug": "At least one suspect drug is required",
}


def is_valid_transition(from_status: str, to_status: str) -> bool:
    try:
        return CaseStatus(to_status) in ALLOWED_TRANSITIONS[CaseStatus(from_status)]
    except (KeyError, ValueError):
        return False


class CaseWorkflow:
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    async def transition(
        self, case_id: str, target_status: str, details: dict[str, Any] | None = None
    ) -> TransitionResult:
        async with self._session_factory() as db:
            case = await cases_repo.get_case_by_id(db, case_id)
            if case is None:
                return TransitionResult(success=False, error=f"Case not found: {case_id}")

            from_status = case.status
            if from_status == target_status:
                return TransitionResult(success=True, from_status=from_status, to_status=target_status)

            if not is_valid_transition(from_status, target_status):
                return TransitionResult(
                    success=False,
                    error=f"Invalid transition from '{from_status}' to '{target_status}'",
                    from_status=from_status,
                )

            await cases_repo.update_case(db, case_id, status=target_status)
            await history_repo.add_history_entry(
                db,
                case_id=case_id,
                event_type=HistoryEventType.STATUS_CHANGED.value,
                details={"from": from_status, "to": target_status, **(details or {})},
            )
            await db.commit()

        logger.info("Case status changed", case_id=case_id, from_status=from_status, to_status=target_status)
        return TransitionResult(success=True, from_status=from_status, to_status=target_status)

    async def can_enter_submission(self, case_id: str) -> ValidationOutcome:
        async with self._session_factory() as db:
            case = await cases_repo.get_case_by_id(db, case_id)
        if case is None:
            return ValidationOutcome(ok=False, validation_errors=[f"Case not found: {case_id}"])

        errors = [message for attr, message in REQUIRED_FOR_SUBMISSION.items() if not getattr(case, attr)]
        return ValidationOutcome(ok=not errors, validation_errors=errors)
