"""
SubmissionCoordinator — drives one case through the ESG protocol.

Responsibilities:
    - Single-flight guard per case (ActiveRunRegistry)
    - Preconditions and the lifetime attempt budget
    - authenticating -> creating_submission -> uploading_document -> finalizing
    - Retry of transient failures with exponential backoff
    - Progress events, attempt rows, history events, workflow transitions

This is the only place that retries and the only writer of the terminal
submission transitions (Submitted / Submission Failed).
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from esg_pipeline.core.constants import (
    AttemptStatus,
    CaseStatus,
    ErrorCategory,
    EsgEnvironment,
    HistoryEventType,
    SubmissionStep,
)
from esg_pipeline.core.logging import get_logger
from esg_pipeline.submission.contracts import (
    AttemptRecord,
    DocumentGenerator,
    EventPublisher,
    SettingsProvider,
    SubmissionStore,
    WorkflowService,
)
from esg_pipeline.submission.errors import DocumentGenerationError, EsgApiError
from esg_pipeline.submission.esg_client import EsgClient
from esg_pipeline.submission.payload_builder import build_create_request
from esg_pipeline.submission.progress import ProgressTracker, SubmissionProgress
from esg_pipeline.submission.registry import ActiveRunRegistry, CancellationFlag, active_runs
from esg_pipeline.submission.retry_handler import backoff_delay, should_retry

logger = get_logger(__name__)

ALREADY_IN_PROGRESS = "Submission already in progress for this case"
CANCELLED_BY_USER = "Cancelled by user"


@dataclass
class SubmitResult:
    """Outcome of one `submit` call."""

    success: bool
    case_id: str
    attempt_number: int = 0
    esg_submission_id: str | None = None
    esg_core_id: str | None = None
    error: str | None = None
    error_category: str | None = None
    retry_count: int = 0
    is_demo_mode: bool = False
    demo_scenario: str | None = None

    @property
    def cancelled(self) -> bool:
        return self.error_category == ErrorCategory.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PreSubmissionSummary:
    """What the operator confirms before submitting a case."""

    case_id: str
    status: str
    environment: str
    safety_report_id: str | None = None
    patient_initials: str | None = None
    primary_reaction: str | None = None
    primary_drug: str | None = None
    is_test_mode: bool = False
    is_demo_mode: bool = False
    validation_passed: bool = True
    validation_errors: list[str] = field(default_factory=list)
    previous_attempts: int = 0
    max_total_attempts: int = 0

    @property
    def remaining_attempts(self) -> int:
        return max(self.max_total_attempts - self.previous_attempts, 0)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["remaining_attempts"] = self.remaining_attempts
        return data


class _RunCancelled(Exception):
    """Raised at a checkpoint once the cancellation flag is set."""


@dataclass
class _Run:
    """Mutable state of one coordinator run."""

    case_id: str
    environment: EsgEnvironment
    attempt: AttemptRecord
    flag: CancellationFlag
    esg_settings: Any
    log: structlog.stdlib.BoundLogger
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_monotonic: float = field(default_factory=time.monotonic)
    retry_count: int = 0
    esg_submission_id: str | None = None
    demo_scenario: str | None = None

    @property
    def attempt_number(self) -> int:
        return self.attempt.attempt_number

    @property
    def is_demo_mode(self) -> bool:
        return self.environment == EsgEnvironment.DEMO

    def checkpoint(self) -> None:
        if self.flag.is_set:
            raise _RunCancelled()


class SubmissionCoordinator:
    """
    Submits cases to the ESG gateway.

    Usage::

        coordinator = SubmissionCoordinator(
            client, store=store, workflow=workflow,
            documents=documents, settings_provider=provider,
            publisher=event_bus,
        )
        result = await coordinator.submit("case-123", "Test")
    """

    def __init__(
        self,
        client: EsgClient,
        *,
        store: SubmissionStore,
        workflow: WorkflowService,
        documents: DocumentGenerator,
        settings_provider: SettingsProvider,
        publisher: EventPublisher | None = None,
        registry: ActiveRunRegistry | None = None,
        progress: ProgressTracker | None = None,
        simulator=None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._workflow = workflow
        self._documents = documents
        self._settings_provider = settings_provider
        self._registry = registry if registry is not None else active_runs
        self._progress = progress if progress is not None else ProgressTracker(publisher=publisher)
        self._simulator = simulator
        self._sleep = sleep
        self._rng = rng

    # ─── Queries ───────────────────────────────────────

    def is_active(self, case_id: str) -> bool:
        return self._registry.is_active(case_id)

    def get_progress(self, case_id: str) -> SubmissionProgress | None:
        return self._progress.get(case_id)

    def cancel(self, case_id: str) -> bool:
        """Request cancellation of the active run for `case_id`.  No-op when none is running."""
        cancelled = self._registry.cancel(case_id)
        if cancelled:
            logger.info("Submission cancellation requested", case_id=case_id)
        return cancelled

    async def pre_submission_summary(self, case_id: str) -> PreSubmissionSummary | None:
        case = await self._store.get_case(case_id)
        if case is None:
            return None

        esg = await self._settings_provider.load()
        outcome = await self._workflow.can_enter_submission(case_id)
        previous = await self._store.historical_attempt_count(case_id)

        return PreSubmissionSummary(
            case_id=case_id,
            status=case.status,
            environment=esg.environment.value,
            safety_report_id=case.safety_report_id,
            patient_initials=case.patient_initials,
            primary_reaction=case.primary_reaction,
            primary_drug=case.primary_drug,
            is_test_mode=esg.environment == EsgEnvironment.TEST,
            is_demo_mode=esg.environment == EsgEnvironment.DEMO,
            validation_passed=outcome.ok,
            validation_errors=list(outcome.validation_errors),
            previous_attempts=previous,
            max_total_attempts=esg.max_total_attempts,
        )

    # ─── Commands ──────────────────────────────────────

    async def retry_failed(self, case_id: str) -> SubmitResult:
        """Resubmit a case sitting in Submission Failed, using the configured environment."""
        case = await self._store.get_case(case_id)
        if case is None or case.status != CaseStatus.SUBMISSION_FAILED:
            return SubmitResult(
                success=False, case_id=case_id,
                error="Case is not in Submission Failed status",
            )
        esg = await self._settings_provider.load()
        return await self.submit(case_id, esg.environment)

    async def submit(
        self,
        case_id: str,
        environment: str | None = None,
        *,
        demo_scenario: str | None = None,
        demo_speed: str | None = None,
    ) -> SubmitResult:
        """Run the full submission for `case_id`.  Never raises for remote failures."""
        flag = self._registry.try_acquire(case_id)
        if flag is None:
            return SubmitResult(success=False, case_id=case_id, error=ALREADY_IN_PROGRESS)

        try:
            return await self._submit(case_id, environment, flag, demo_scenario, demo_speed)
        finally:
            self._registry.release(case_id, flag)
            self._progress.discard(case_id)

    # ─── Internal ──────────────────────────────────────

    async def _submit(
        self,
        case_id: str,
        environment: str | None,
        flag: CancellationFlag,
        demo_scenario: str | None,
        demo_speed: str | None,
    ) -> SubmitResult:
        esg = await self._settings_provider.load()
        environment = EsgEnvironment(environment or esg.environment)
        log = logger.bind(case_id=case_id, environment=environment.value)

        # ── Preconditions ─────────────────────────────
        case = await self._store.get_case(case_id)
        if case is None:
            return SubmitResult(success=False, case_id=case_id, error=f"Case not found: {case_id}")

        if case.status == CaseStatus.DRAFT:
            outcome = await self._workflow.can_enter_submission(case_id)
            if not outcome.ok:
                log.info("Submission blocked by validation", errors=outcome.validation_errors)
                return SubmitResult(
                    success=False,
                    case_id=case_id,
                    error=(
                        f"Validation failed with {len(outcome.validation_errors)} error(s). "
                        "Please fix errors before submitting."
                    ),
                    error_category=ErrorCategory.VALIDATION.value,
                )

        # ── Lifetime budget ───────────────────────────
        prior = await self._store.historical_attempt_count(case_id)
        if prior >= esg.max_total_attempts:
            message = (
                f"Maximum total attempts ({esg.max_total_attempts}) exceeded. "
                "Please return to Draft and retry."
            )
            log.warning("Attempt budget exhausted", prior_attempts=prior)
            await self._workflow.transition(
                case_id, CaseStatus.SUBMISSION_FAILED,
                {"reason": "Max total attempts exceeded", "prior_attempts": prior},
            )
            await self._store.update_case(case_id, api_last_error=message)
            return SubmitResult(
                success=False,
                case_id=case_id,
                attempt_number=prior,
                error=message,
                error_category=ErrorCategory.BUDGET_EXCEEDED.value,
            )

        attempt_number = prior + 1

        # ── Enter Submitting ──────────────────────────
        transition = await self._workflow.transition(
            case_id, CaseStatus.SUBMITTING,
            {"environment": environment.value, "method": "api", "attempt_number": attempt_number},
        )
        if not transition.success:
            return SubmitResult(
                success=False,
                case_id=case_id,
                error=transition.error or "Cannot transition to Submitting status",
            )

        attempt = await self._store.create_attempt(case_id, attempt_number, environment.value)
        await self._store.append_history_event(
            case_id, HistoryEventType.API_SUBMITTING,
            {"attempt_number": attempt_number, "environment": environment.value},
        )

        run = _Run(
            case_id=case_id,
            environment=environment,
            attempt=attempt,
            flag=flag,
            esg_settings=esg,
            log=log.bind(attempt=attempt_number),
        )
        if run.is_demo_mode and self._simulator is not None:
            config = self._simulator.configure(
                scenario=demo_scenario or esg.demo_scenario,
                speed=demo_speed or esg.demo_speed,
            )
            run.demo_scenario = config.scenario.value

        run.log.info("Submission started", max_retries=esg.max_automatic_retries)
        return await self._run_with_retry(run)

    async def _run_with_retry(self, run: _Run) -> SubmitResult:
        max_retries = run.esg_settings.max_automatic_retries

        while True:
            try:
                run.checkpoint()
                submission_id, core_id = await self._execute_steps(run)
            except _RunCancelled:
                return await self._record_cancelled(run)
            except EsgApiError as exc:
                category, message, http_status = exc.category, str(exc), exc.http_status
            except Exception as exc:
                # Unexpected error: never retried
                run.log.exception("Unexpected error during submission", error=str(exc))
                category, message, http_status = ErrorCategory.UNKNOWN, str(exc) or repr(exc), None
            else:
                return await self._record_success(run, submission_id, core_id)

            if should_retry(category, run.retry_count, max_retries):
                run.retry_count += 1
                delay = backoff_delay(run.retry_count, self._rng)
                run.log.warning(
                    f"Submission failed, retrying in {delay:.1f}s "
                    f"(retry {run.retry_count}/{max_retries})",
                    error=message,
                    error_category=category.value,
                )
                await self._store.append_history_event(
                    run.case_id, HistoryEventType.API_RETRY,
                    {
                        "retry_count": run.retry_count,
                        "error_category": category.value,
                        "error": message,
                        "delay_ms": int(delay * 1000),
                    },
                )
                await self._sleep(delay)
                continue

            return await self._record_failure(run, category, message, http_status)

    async def _execute_steps(self, run: _Run) -> tuple[str, str]:
        env = run.environment.value

        # ── authenticating ────────────────────────────
        self._emit(run, SubmissionStep.AUTHENTICATING, 0)
        await self._client.authenticate(env)

        document = await self._documents.generate(run.case_id)
        if not document.success or not document.content:
            raise DocumentGenerationError(
                "; ".join(document.errors) or "Failed to generate XML",
                errors=document.errors,
                case_id=run.case_id,
            )
        filename = document.filename or f"{run.case_id}_E2B_R3.xml"

        # ── creating_submission ───────────────────────
        run.checkpoint()
        self._emit(run, SubmissionStep.CREATING_SUBMISSION, 1)
        created = await self._client.create_submission(
            env, build_create_request(env, run.esg_settings)
        )
        run.esg_submission_id = created.submission_id

        # ── uploading_document ────────────────────────
        run.checkpoint()
        self._emit(run, SubmissionStep.UPLOADING_DOCUMENT, 2)
        upload = await self._client.upload_document(
            env, created.submission_id, document.content, filename
        )
        if not upload.accepted:
            raise EsgApiError(
                f"Document upload was not accepted (status {upload.status})",
                ErrorCategory.VALIDATION,
            )

        # ── finalizing ────────────────────────────────
        run.checkpoint()
        self._emit(run, SubmissionStep.FINALIZING, 3)
        finalized = await self._client.finalize(env, created.submission_id)

        return created.submission_id, finalized.esg_core_id

    # ── Outcome recording ─────────────────────────────

    async def _record_success(self, run: _Run, submission_id: str, core_id: str) -> SubmitResult:
        now = datetime.now(timezone.utc)
        demo_note = " [DEMO MODE]" if run.is_demo_mode else ""

        await self._store.update_case(
            run.case_id,
            esg_submission_id=submission_id,
            esg_core_id=core_id,
            last_submitted_at=now,
            api_attempt_count=run.attempt_number,
            api_last_error=None,
        )
        await self._store.update_attempt(
            run.attempt.id,
            status=AttemptStatus.SUCCESS.value,
            completed_at=now,
            esg_submission_id=submission_id,
            esg_core_id=core_id,
        )
        details = {
            "esg_submission_id": submission_id,
            "esg_core_id": core_id,
            "environment": run.environment.value,
            "attempt_number": run.attempt_number,
            "retry_count": run.retry_count,
            "is_demo_mode": run.is_demo_mode,
        }
        await self._store.append_history_event(
            run.case_id, HistoryEventType.API_SUBMIT_SUCCESS, details,
            notes=f"API submission (attempt {run.attempt_number}), ESG Core ID: {core_id}{demo_note}",
        )

        transition = await self._workflow.transition(
            run.case_id, CaseStatus.SUBMITTED, {**details, "method": "api"}
        )
        if not transition.success:
            run.log.error("Failed to transition to Submitted", error=transition.error)

        self._emit(run, SubmissionStep.COMPLETE, 4)
        run.log.info("Submission complete", esg_submission_id=submission_id, esg_core_id=core_id)

        return SubmitResult(
            success=True,
            case_id=run.case_id,
            attempt_number=run.attempt_number,
            esg_submission_id=submission_id,
            esg_core_id=core_id,
            retry_count=run.retry_count,
            is_demo_mode=run.is_demo_mode,
            demo_scenario=run.demo_scenario,
        )

    async def _record_failure(
        self,
        run: _Run,
        category: ErrorCategory,
        message: str,
        http_status: int | None,
    ) -> SubmitResult:
        now = datetime.now(timezone.utc)

        await self._store.update_case(
            run.case_id, api_last_error=message, api_attempt_count=run.attempt_number,
        )
        await self._store.update_attempt(
            run.attempt.id,
            status=AttemptStatus.FAILED.value,
            completed_at=now,
            esg_submission_id=run.esg_submission_id,
            error=message,
            error_category=category.value,
            http_status_code=http_status,
        )
        details = {
            "error": message,
            "error_category": category.value,
            "attempt_number": run.attempt_number,
            "retry_count": run.retry_count,
        }
        await self._store.append_history_event(run.case_id, HistoryEventType.API_SUBMIT_FAILED, details)
        await self._workflow.transition(run.case_id, CaseStatus.SUBMISSION_FAILED, details)

        self._emit(run, SubmissionStep.FAILED, 0, error=message, error_category=category.value)
        run.log.error("Submission failed", error=message, error_category=category.value)

        return SubmitResult(
            success=False,
            case_id=run.case_id,
            attempt_number=run.attempt_number,
            esg_submission_id=run.esg_submission_id,
            error=message,
            error_category=category.value,
            retry_count=run.retry_count,
            is_demo_mode=run.is_demo_mode,
            demo_scenario=run.demo_scenario,
        )

    async def _record_cancelled(self, run: _Run) -> SubmitResult:
        now = datetime.now(timezone.utc)

        await self._store.update_case(
            run.case_id, api_last_error="Submission cancelled", api_attempt_count=run.attempt_number,
        )
        await self._store.update_attempt(
            run.attempt.id,
            status=AttemptStatus.FAILED.value,
            completed_at=now,
            esg_submission_id=run.esg_submission_id,
            error=CANCELLED_BY_USER,
            error_category=ErrorCategory.CANCELLED.value,
        )
        await self._store.append_history_event(
            run.case_id, HistoryEventType.API_SUBMIT_FAILED,
            {
                "reason": CANCELLED_BY_USER,
                "attempt_number": run.attempt_number,
                "retry_count": run.retry_count,
            },
        )
        await self._workflow.transition(
            run.case_id, CaseStatus.SUBMISSION_FAILED, {"reason": "cancelled by user"}
        )

        self._emit(
            run, SubmissionStep.FAILED, 0,
            error="Submission cancelled", error_category=ErrorCategory.CANCELLED.value,
        )
        run.log.info("Submission cancelled", retry_count=run.retry_count)

        return SubmitResult(
            success=False,
            case_id=run.case_id,
            attempt_number=run.attempt_number,
            esg_submission_id=run.esg_submission_id,
            error="Submission cancelled",
            error_category=ErrorCategory.CANCELLED.value,
            retry_count=run.retry_count,
            is_demo_mode=run.is_demo_mode,
            demo_scenario=run.demo_scenario,
        )

    def _emit(self, run: _Run, step: SubmissionStep, steps_completed: int, **kwargs) -> None:
        self._progress.emit(
            run.case_id,
            step,
            steps_completed,
            run.started_at,
            started_monotonic=run.started_monotonic,
            esg_submission_id=run.esg_submission_id,
            is_demo_mode=run.is_demo_mode,
            demo_scenario=run.demo_scenario,
            **kwargs,
        )
