"""In-memory progress snapshots for running submissions."""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from esg_pipeline.core.constants import PROGRESS_CHANNEL, TOTAL_SUBMISSION_STEPS, SubmissionStep

_STEP_DESCRIPTIONS = {
    SubmissionStep.AUTHENTICATING: "Authenticating with FDA ESG{suffix}...",
    SubmissionStep.CREATING_SUBMISSION: "Creating submission record{suffix}...",
    SubmissionStep.UPLOADING_DOCUMENT: "Uploading E2B(R3) XML{suffix}...",
    SubmissionStep.FINALIZING: "Finalizing submission{suffix}...",
    SubmissionStep.COMPLETE: "Submission complete{suffix}",
    SubmissionStep.FAILED: "Submission failed{suffix}",
}


def step_description(step: SubmissionStep, is_demo_mode: bool = False) -> str:
    return _STEP_DESCRIPTIONS[step].format(suffix=" (Demo)" if is_demo_mode else "")


@dataclass
class SubmissionProgress:
    """Latest step of a running submission, as broadcast on the progress channel."""

    case_id: str
    current_step: str
    step_description: str
    steps_completed: int
    started_at: str
    elapsed_ms: int
    total_steps: int = TOTAL_SUBMISSION_STEPS
    esg_submission_id: str | None = None
    error: str | None = None
    error_category: str | None = None
    is_demo_mode: bool = False
    demo_scenario: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def is_terminal(self) -> bool:
        return self.current_step in (SubmissionStep.COMPLETE, SubmissionStep.FAILED)


@dataclass
class ProgressTracker:
    """
    Holds the latest SubmissionProgress per case and publishes each update.

    Terminal steps (complete / failed) are published and then dropped, so
    `get()` only ever returns progress for a run that is still going.
    """

    publisher: Any = None
    _snapshots: dict[str, SubmissionProgress] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def emit(
        self,
        case_id: str,
        step: SubmissionStep,
        steps_completed: int,
        started_at: datetime,
        *,
        started_monotonic: float | None = None,
        esg_submission_id: str | None = None,
        error: str | None = None,
        error_category: str | None = None,
        is_demo_mode: bool = False,
        demo_scenario: str | None = None,
    ) -> SubmissionProgress:
        if started_monotonic is not None:
            elapsed_ms = int((time.monotonic() - started_monotonic) * 1000)
        else:
            elapsed_ms = int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)

        progress = SubmissionProgress(
            case_id=case_id,
            current_step=step.value,
            step_description=step_description(step, is_demo_mode),
            steps_completed=steps_completed,
            started_at=started_at.isoformat(),
            elapsed_ms=elapsed_ms,
            esg_submission_id=esg_submission_id,
            error=error,
            error_category=error_category,
            is_demo_mode=is_demo_mode,
            demo_scenario=demo_scenario,
        )

        with self._lock:
            if progress.is_terminal:
                self._snapshots.pop(case_id, None)
            else:
                self._snapshots[case_id] = progress

        if self.publisher is not None:
            self.publisher.publish(PROGRESS_CHANNEL, progress.to_dict())
        return progress

    def get(self, case_id: str) -> SubmissionProgress | None:
        with self._lock:
            return self._snapshots.get(case_id)

    def discard(self, case_id: str) -> None:
        with self._lock:
            self._snapshots.pop(case_id, None)
