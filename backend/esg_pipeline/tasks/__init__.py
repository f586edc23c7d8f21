"""
Celery application factory.
"""

from celery import Celery
from celery.signals import worker_process_init

from esg_pipeline.core.config import settings
from esg_pipeline.core.logging import setup_logging

celery_app = Celery("esg_pipeline")
celery_app.config_from_object("celeryconfig")

# Auto-discover tasks in these modules
celery_app.autodiscover_tasks([
    "esg_pipeline.tasks.submission_tasks",
])


@worker_process_init.connect
def configure_worker_logging(**kwargs) -> None:
    """Each forked worker process gets the same structlog setup as the API."""
    setup_logging("DEBUG" if settings.APP_ENV == "development" else settings.LOG_LEVEL)
