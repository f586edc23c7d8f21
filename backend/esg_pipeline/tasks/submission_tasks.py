"""
Celery tasks — queued ESG submissions and acknowledgment polling.

Each task runs the async pipeline under `asyncio.run` with a fresh engine,
so no connection pool is shared across event loops.  The ActiveRunRegistry
is process-wide, so the single-flight guard still holds between tasks
running in the same worker.
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from esg_pipeline.core.config import settings
from esg_pipeline.db.session import build_engine
from esg_pipeline.submission.service import build_services
from esg_pipeline.tasks import celery_app

logger = structlog.get_logger("tasks.submission")


async def _with_services(operation):
    engine = build_engine(settings.DATABASE_URL, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    services = build_services(factory)
    try:
        return await operation(services)
    finally:
        await services.aclose()
        await engine.dispose()


@celery_app.task(bind=True, name="esg_pipeline.tasks.submission_tasks.submit_case")
def submit_case(self, case_id: str, environment: str | None = None):
    """
    Submit one case to the ESG gateway.

    Retries are handled inside the coordinator; the task itself is never
    retried by Celery, since a second run would consume another attempt.
    """
    task_log = logger.bind(task_id=self.request.id, case_id=case_id, environment=environment)
    task_log.info("Submission task started")

    async def _run(services):
        return await services.coordinator.submit(case_id, environment)

    result = asyncio.run(_with_services(_run))

    task_log.info(
        "Submission task finished",
        success=result.success,
        attempt_number=result.attempt_number,
        error_category=result.error_category,
    )
    return result.to_dict()


@celery_app.task(bind=True, name="esg_pipeline.tasks.submission_tasks.poll_acknowledgments")
def poll_acknowledgments(self):
    """Run a single acknowledgment poll cycle (for beat-driven deployments)."""
    task_log = logger.bind(task_id=self.request.id)

    async def _run(services):
        return await services.poller.poll_once()

    errors = asyncio.run(_with_services(_run))
    task_log.info("Acknowledgment poll finished", error_count=len(errors))
    return {"errors": errors}
