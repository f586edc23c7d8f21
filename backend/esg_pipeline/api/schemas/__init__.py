"""API schema package."""

from esg_pipeline.api.schemas.esg import (
    BatchSubmitRequest,
    ConnectionTestRequest,
    EsgSettingsResponse,
    EsgSettingsUpdate,
    PollingIntervalRequest,
    SubmitRequest,
)

__all__ = [
    "SubmitRequest",
    "BatchSubmitRequest",
    "PollingIntervalRequest",
    "EsgSettingsUpdate",
    "EsgSettingsResponse",
    "ConnectionTestRequest",
]
