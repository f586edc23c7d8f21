"""Apply a received acknowledgment to the attempt row, the case and its workflow status."""

from __future__ import annotations

from datetime import datetime, timezone

from esg_pipeline.core.constants import ACK_RECEIVED_CHANNEL, CaseStatus, HistoryEventType
from esg_pipeline.core.logging import get_logger
from esg_pipeline.submission.schemas import Acknowledgment

logger = get_logger(__name__)


class AcknowledgmentReconciler:
    def __init__(self, store, workflow, publisher=None) -> None:
        self._store = store
        self._workflow = workflow
        self._publisher = publisher

    async def reconcile(self, case_id: str, ack: Acknowledgment) -> str:
        """Record `ack` for `case_id`.  Returns the workflow status the case was moved to."""
        timestamp = ack.timestamp or datetime.now(timezone.utc).isoformat()
        errors = [e.model_dump(exclude_none=True) for e in ack.errors]
        ack_type = ack.acknowledgment_type.value
        log = logger.bind(case_id=case_id, ack_type=ack_type)

        attempt = await self._store.latest_attempt(case_id)
        if attempt is not None:
            await self._store.update_attempt(
                attempt.id,
                ack_type=ack_type,
                ack_timestamp=timestamp,
                ack_fda_core_id=ack.fda_core_id,
                ack_errors=errors or None,
            )

        if ack.is_nack:
            summary = ack.error_summary()
            details = {"ack_type": ack_type, "errors": errors, "timestamp": timestamp}
            await self._store.append_history_event(
                case_id, HistoryEventType.NACK_RECEIVED, details, notes=f"NACK received: {summary}",
            )
            target = CaseStatus.SUBMISSION_FAILED
            result = await self._workflow.transition(case_id, target, details)
            await self._store.update_case(case_id, api_last_error=f"NACK: {summary}")
            log.warning("NACK received", errors=summary)
        else:
            details = {"ack_type": ack_type, "fda_core_id": ack.fda_core_id, "timestamp": timestamp}
            await self._store.append_history_event(
                case_id, HistoryEventType.ACK_RECEIVED, details, notes=f"{ack_type} received from FDA",
            )
            target = CaseStatus.ACKNOWLEDGED
            result = await self._workflow.transition(case_id, target, details)
            await self._store.update_case(
                case_id, fda_case_number=ack.fda_core_id, acknowledgment_date=timestamp,
            )
            log.info("Acknowledgment received", fda_core_id=ack.fda_core_id)

        if not result.success:
            log.error("Workflow transition after acknowledgment failed", error=result.error)

        if self._publisher is not None:
            self._publisher.publish(
                ACK_RECEIVED_CHANNEL,
                {"case_id": case_id, "acknowledgment": ack.model_dump(mode="json")},
            )
        return target.value
