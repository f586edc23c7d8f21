"""
ESG NextGen submission endpoints — submit, cancel, retry, progress,
acknowledgment polling, settings and a live event stream.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from esg_pipeline.api.deps import get_db, get_services
from esg_pipeline.api.schemas.esg import (
    BatchSubmitRequest,
    ConnectionTestRequest,
    EsgSettingsResponse,
    EsgSettingsUpdate,
    PollingIntervalRequest,
    SubmitRequest,
)
from esg_pipeline.core.constants import ACK_RECEIVED_CHANNEL, PROGRESS_CHANNEL
from esg_pipeline.core.events import Event, event_bus
from esg_pipeline.core.logging import get_logger
from esg_pipeline.repositories import submission_attempts as attempts_repo
from esg_pipeline.submission.service import SubmissionServices
from esg_pipeline.submission.store import attempt_to_record

router = APIRouter(prefix="/esg", tags=["ESG Submissions"])
logger = get_logger(__name__)


# ─── Submission ───────────────────────────────────────────
@router.post("/cases/{case_id}/submit", status_code=status.HTTP_202_ACCEPTED)
async def submit_case(
    case_id: str,
    request: Request,
    payload: SubmitRequest | None = None,
    wait: bool = False,
    services: SubmissionServices = Depends(get_services),
):
    """
    Start an API submission for one case.

    Runs in the background by default; progress is streamed on
    /esg/events.  With `wait=true` the call returns the final result.
    """
    coordinator = services.coordinator
    if coordinator.is_active(case_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Submission already in progress for this case",
        )

    payload = payload or SubmitRequest()
    run = coordinator.submit(
        case_id,
        payload.environment,
        demo_scenario=payload.demo_scenario,
        demo_speed=payload.demo_speed,
    )

    if wait:
        result = await run
        return result.to_dict()

    task = asyncio.create_task(run, name=f"esg-submit-{case_id}")
    background = request.app.state.background_tasks
    background.add(task)
    task.add_done_callback(background.discard)
    return {"case_id": case_id, "status": "started"}


@router.post("/submissions/batch", status_code=status.HTTP_202_ACCEPTED)
async def submit_batch(payload: BatchSubmitRequest):
    """Queue cases on the `submissions` Celery queue."""
    from esg_pipeline.tasks.submission_tasks import submit_case as submit_case_task

    environment = payload.environment.value if payload.environment else None
    queued = []
    for case_id in dict.fromkeys(payload.case_ids):
        task = submit_case_task.delay(case_id, environment)
        queued.append({"case_id": case_id, "celery_task_id": task.id})

    logger.info("Batch submission queued", count=len(queued), environment=environment)
    return {"message": "Submissions queued", "queued": queued}


@router.post("/cases/{case_id}/cancel")
async def cancel_submission(case_id: str, services: SubmissionServices = Depends(get_services)):
    """Request cooperative cancellation of an in-flight submission."""
    cancelled = services.coordinator.cancel(case_id)
    return {"case_id": case_id, "cancel_requested": cancelled}


@router.post("/cases/{case_id}/retry")
async def retry_submission(case_id: str, services: SubmissionServices = Depends(get_services)):
    """Resubmit a case in Submission Failed and wait for the result."""
    result = await services.coordinator.retry_failed(case_id)
    return result.to_dict()


@router.get("/cases/{case_id}/progress")
async def get_progress(case_id: str, services: SubmissionServices = Depends(get_services)):
    progress = services.coordinator.get_progress(case_id)
    return {
        "case_id": case_id,
        "is_active": services.coordinator.is_active(case_id),
        "progress": progress.to_dict() if progress else None,
    }


@router.get("/cases/{case_id}/summary")
async def get_pre_submission_summary(case_id: str, services: SubmissionServices = Depends(get_services)):
    summary = await services.coordinator.pre_submission_summary(case_id)
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Case not found")
    return summary.to_dict()


@router.get("/cases/{case_id}/attempts")
async def list_attempts(case_id: str, db: AsyncSession = Depends(get_db)):
    rows = await attempts_repo.list_attempts_for_case(db, case_id)
    return {"case_id": case_id, "data": [attempt_to_record(r).to_dict() for r in rows]}


@router.get("/submissions/failed")
async def list_failed_submissions(limit: int = 50, db: AsyncSession = Depends(get_db)):
    """Cases whose latest attempt failed."""
    rows = await attempts_repo.list_failed_submissions(db, limit=limit)
    return {"data": [attempt_to_record(r).to_dict() for r in rows]}


@router.get("/acknowledgments/recent")
async def list_recent_acknowledgments(limit: int = 20, db: AsyncSession = Depends(get_db)):
    rows = await attempts_repo.list_recent_acknowledgments(db, limit=limit)
    return {"data": [attempt_to_record(r).to_dict() for r in rows]}


@router.post("/cases/{case_id}/acknowledgment/check")
async def check_acknowledgment(case_id: str, services: SubmissionServices = Depends(get_services)):
    """Check for an acknowledgment now, outside the polling schedule."""
    result = await services.poller.check_now(case_id)
    return result.to_dict()


# ─── Polling ──────────────────────────────────────────────
@router.post("/polling/start")
async def start_polling(services: SubmissionServices = Depends(get_services)):
    started = await services.poller.start()
    status_ = await services.poller.status()
    return {"started": started, **status_.to_dict()}


@router.post("/polling/stop")
async def stop_polling(services: SubmissionServices = Depends(get_services)):
    await services.poller.stop()
    return (await services.poller.status()).to_dict()


@router.get("/polling/status")
async def polling_status(services: SubmissionServices = Depends(get_services)):
    return (await services.poller.status()).to_dict()


@router.put("/polling/interval")
async def set_polling_interval(
    payload: PollingIntervalRequest,
    services: SubmissionServices = Depends(get_services),
):
    await services.poller.set_interval(payload.minutes)
    return (await services.poller.status()).to_dict()


# ─── Settings & connection ────────────────────────────────
@router.get("/settings", response_model=EsgSettingsResponse)
async def get_settings(services: SubmissionServices = Depends(get_services)) -> EsgSettingsResponse:
    esg = await services.settings_provider.load()
    return EsgSettingsResponse(
        **esg.model_dump(),
        has_credentials=services.credential_store.has_credentials(),
    )


@router.put("/settings", response_model=EsgSettingsResponse)
async def update_settings(
    payload: EsgSettingsUpdate,
    services: SubmissionServices = Depends(get_services),
) -> EsgSettingsResponse:
    updates = payload.model_dump(exclude_none=True)
    esg = await services.settings_provider.save(updates)
    if "environment" in updates:
        # A token is only valid for the environment it was issued for.
        services.auth.clear_token_cache()
    return EsgSettingsResponse(
        **esg.model_dump(),
        has_credentials=services.credential_store.has_credentials(),
    )


@router.post("/connection/test")
async def test_connection(
    payload: ConnectionTestRequest | None = None,
    services: SubmissionServices = Depends(get_services),
):
    environment = payload.environment if payload and payload.environment else None
    if environment is None:
        environment = (await services.settings_provider.load()).environment
    result = await services.auth.test_connection(environment.value)
    return result.to_dict()


@router.post("/auth/clear-token")
async def clear_token_cache(services: SubmissionServices = Depends(get_services)):
    services.auth.clear_token_cache()
    return {"cleared": True}


# ─── Event stream ─────────────────────────────────────────
def _format_event(event: Event) -> str:
    return "".join(
        [
            f"event: {event.channel}\n",
            f"data: {json.dumps(event.to_dict())}\n\n",
        ]
    )


async def _event_iterator(channels: set[str]) -> AsyncIterator[bytes]:
    async for event in event_bus.subscribe(channels):
        yield _format_event(event).encode("utf-8")


@router.get("/events", response_class=StreamingResponse)
async def stream_events() -> StreamingResponse:
    """Server-sent progress and acknowledgment events."""
    return StreamingResponse(
        _event_iterator({PROGRESS_CHANNEL, ACK_RECEIVED_CHANNEL}),
        status_code=status.HTTP_200_OK,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
