"""Shared constants and enums used across the application."""

from enum import StrEnum


class EsgEnvironment(StrEnum):
    """Named remote deployment targets."""

    TEST = "Test"
    PRODUCTION = "Production"
    DEMO = "Demo"


class CaseStatus(StrEnum):
    """Workflow status of a case, as far as submission is concerned."""

    DRAFT = "Draft"
    READY_FOR_EXPORT = "Ready for Export"
    EXPORTED = "Exported"
    SUBMITTING = "Submitting"
    SUBMITTED = "Submitted"
    ACKNOWLEDGED = "Acknowledged"
    SUBMISSION_FAILED = "Submission Failed"
    REJECTED = "Rejected"


class SubmissionStep(StrEnum):
    """Steps emitted on the progress channel, in order."""

    AUTHENTICATING = "authenticating"
    CREATING_SUBMISSION = "creating_submission"
    UPLOADING_DOCUMENT = "uploading_document"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


class ErrorCategory(StrEnum):
    """Failure taxonomy. Retry decisions are made on the category, never the raw status."""

    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    UNKNOWN = "unknown"
    CANCELLED = "cancelled"
    BUDGET_EXCEEDED = "budget_exceeded"


RETRYABLE_ERROR_CATEGORIES = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.SERVER_ERROR,
})


class AttemptStatus(StrEnum):
    """Status of a persisted submission attempt row."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class AckType(StrEnum):
    """Acknowledgment levels returned by the gateway."""

    ACK1 = "ACK1"
    ACK2 = "ACK2"
    ACK3 = "ACK3"
    NACK = "NACK"


class HistoryEventType(StrEnum):
    """Event types written to submission_history."""

    API_SUBMITTING = "api_submitting"
    API_RETRY = "api_retry"
    API_SUBMIT_SUCCESS = "api_submit_success"
    API_SUBMIT_FAILED = "api_submit_failed"
    ACK_RECEIVED = "ack_received"
    NACK_RECEIVED = "nack_received"
    STATUS_CHANGED = "status_changed"


class DemoScenario(StrEnum):
    """Behaviour of the simulated gateway in the Demo environment."""

    HAPPY_PATH = "happy_path"
    SLOW_PROCESSING = "slow_processing"
    VALIDATION_ERROR = "validation_error"
    BUSINESS_RULE_ERROR = "business_rule_error"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"


class DemoSpeed(StrEnum):
    """Timing multiplier for the simulated gateway."""

    REALTIME = "realtime"
    FAST = "fast"
    INSTANT = "instant"


# Event bus channels
PROGRESS_CHANNEL = "esg:submission-progress"
ACK_RECEIVED_CHANNEL = "esg:acknowledgment-received"

TOTAL_SUBMISSION_STEPS = 4
