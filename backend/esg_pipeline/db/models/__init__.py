"""
Models package — re-exports Base and all models.

Import models here so `Base.metadata.create_all` picks up every table.

When adding a new model:
    1. Create `esg_pipeline/db/models/<table_name>.py`
    2. Import it here
"""

from esg_pipeline.db.models.base import Base
from esg_pipeline.db.models.app_setting import AppSetting
from esg_pipeline.db.models.case import Case
from esg_pipeline.db.models.submission_attempt import SubmissionAttempt
from esg_pipeline.db.models.submission_history import SubmissionHistory

__all__ = [
    "Base",
    "AppSetting",
    "Case",
    "SubmissionAttempt",
    "SubmissionHistory",
]
