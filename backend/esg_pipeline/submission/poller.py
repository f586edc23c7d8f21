"""
AcknowledgmentPoller — background reconciliation of submitted cases.

The loop sleeps for the configured interval, runs one cycle, and only then
schedules the next one.  Cycles therefore never overlap, even when a cycle
takes longer than the interval.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from esg_pipeline.core.constants import HistoryEventType
from esg_pipeline.core.logging import get_logger
from esg_pipeline.submission.contracts import (
    EventPublisher,
    SettingsProvider,
    SubmissionStore,
    WorkflowService,
)
from esg_pipeline.submission.esg_client import EsgClient
from esg_pipeline.submission.reconciler import AcknowledgmentReconciler
from esg_pipeline.submission.schemas import Acknowledgment

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PollingState:
    is_active: bool = False
    last_poll_time: datetime | None = None
    next_poll_time: datetime | None = None
    recent_errors: list[str] = field(default_factory=list)


@dataclass
class PollingStatus:
    is_active: bool
    cases_being_polled: int
    last_poll_time: str | None = None
    next_poll_time: str | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CheckAcknowledgmentResult:
    case_id: str
    has_acknowledgment: bool
    acknowledgment: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AcknowledgmentPoller:
    def __init__(
        self,
        client: EsgClient,
        *,
        store: SubmissionStore,
        workflow: WorkflowService,
        settings_provider: SettingsProvider,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._settings_provider = settings_provider
        self._reconciler = AcknowledgmentReconciler(store, workflow, publisher)
        self._clock = clock
        self._sleep = sleep
        self._state = PollingState()
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> PollingState:
        return self._state

    # ─── Lifecycle ─────────────────────────────────────

    async def start(self) -> bool:
        """Start the loop.  Returns False when already running or unconfigured."""
        if self._state.is_active:
            return False

        esg = await self._settings_provider.load()
        if not esg.can_poll:
            logger.info("Acknowledgment polling not started: ESG API not configured")
            return False

        self._state.is_active = True
        self._task = asyncio.create_task(self._loop(), name="esg-ack-poller")
        logger.info("Acknowledgment polling started", interval_minutes=esg.polling_interval_minutes)
        return True

    async def stop(self) -> None:
        self._state.is_active = False
        self._state.next_poll_time = None
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Acknowledgment polling stopped")

    async def set_interval(self, minutes: int) -> None:
        """Persist a new interval; an active poller restarts on it."""
        await self._settings_provider.save({"polling_interval_minutes": minutes})
        if self._state.is_active:
            await self.stop()
            await self.start()

    async def status(self) -> PollingStatus:
        cases = await self._store.cases_awaiting_ack()
        return PollingStatus(
            is_active=self._state.is_active,
            cases_being_polled=len(cases),
            last_poll_time=_iso(self._state.last_poll_time),
            next_poll_time=_iso(self._state.next_poll_time),
            errors=list(self._state.recent_errors),
        )

    # ─── Polling ───────────────────────────────────────

    async def _loop(self) -> None:
        while self._state.is_active:
            esg = await self._settings_provider.load()
            interval = esg.polling_interval_minutes * 60
            self._state.next_poll_time = self._clock() + timedelta(seconds=interval)
            await self._sleep(interval)
            if not self._state.is_active:
                break
            try:
                await self.poll_once()
            except Exception as exc:
                # The store itself failed; keep polling on the next cycle.
                logger.exception("Acknowledgment poll cycle failed", error=str(exc))
                self._state.recent_errors = [f"Poll cycle failed: {exc}"]

    async def poll_once(self) -> list[str]:
        """Run one cycle over every case awaiting acknowledgment.  Returns the cycle's diagnostics."""
        started = self._clock()
        errors: list[str] = []

        esg = await self._settings_provider.load()
        timeout = timedelta(hours=esg.polling_timeout_hours)
        environment = esg.environment.value

        cases = await self._store.cases_awaiting_ack()
        if cases:
            logger.info("Checking submitted cases", count=len(cases))

        for info in cases:
            log = logger.bind(case_id=info.case_id)

            if info.last_submitted_at is not None and started - info.last_submitted_at > timeout:
                message = f"Case {info.case_id}: polling timeout exceeded"
                log.warning("Polling timeout exceeded", timeout_hours=esg.polling_timeout_hours)
                errors.append(message)
                try:
                    await self._store.append_history_event(
                        info.case_id,
                        HistoryEventType.API_SUBMIT_FAILED,
                        {"reason": "Polling timeout exceeded"},
                        notes="Automatic polling timed out waiting for acknowledgment",
                    )
                except Exception as exc:
                    errors.append(f"Case {info.case_id}: {exc}")
                continue

            try:
                ack = await self._client.get_status(environment, info.esg_submission_id)
                if ack is not None:
                    await self._reconciler.reconcile(info.case_id, ack)
            except Exception as exc:
                log.warning("Acknowledgment check failed", error=str(exc))
                errors.append(f"Case {info.case_id}: {exc}")

        self._state.last_poll_time = started
        self._state.recent_errors = errors
        return errors

    async def check_now(self, case_id: str) -> CheckAcknowledgmentResult:
        """On-demand check of a single case.  Skips the timeout rule."""
        try:
            case = await self._store.get_case(case_id)
            if case is None or not case.esg_submission_id:
                return CheckAcknowledgmentResult(
                    case_id=case_id,
                    has_acknowledgment=False,
                    error="No API submission found for this case",
                )

            esg = await self._settings_provider.load()
            ack: Acknowledgment | None = await self._client.get_status(
                esg.environment.value, case.esg_submission_id
            )
            if ack is None:
                return CheckAcknowledgmentResult(case_id=case_id, has_acknowledgment=False)

            await self._reconciler.reconcile(case_id, ack)
            return CheckAcknowledgmentResult(
                case_id=case_id,
                has_acknowledgment=True,
                acknowledgment=ack.model_dump(mode="json"),
            )
        except Exception as exc:
            logger.warning("Manual acknowledgment check failed", case_id=case_id, error=str(exc))
            return CheckAcknowledgmentResult(case_id=case_id, has_acknowledgment=False, error=str(exc))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
