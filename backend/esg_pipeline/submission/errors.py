"""
Domain-specific exception hierarchy for the submission pipeline.

All submission exceptions inherit from SubmissionError so callers can
catch broadly or narrowly as needed.  API-level errors carry an
ErrorCategory, which is the only thing the retry policy looks at.
"""

from __future__ import annotations

from esg_pipeline.core.constants import RETRYABLE_ERROR_CATEGORIES, ErrorCategory


class SubmissionError(Exception):
    """Base exception for all submission pipeline errors."""

    def __init__(
        self,
        message: str,
        *,
        case_id: str | None = None,
        step_name: str | None = None,
        details: dict | None = None,
    ) -> None:
        self.case_id = case_id
        self.step_name = step_name
        self.details = details or {}
        super().__init__(message)


class EsgApiError(SubmissionError):
    """A call to the ESG gateway failed.  Categorised for retry decisions."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        *,
        http_status: int | None = None,
        response_body: str | None = None,
        **kwargs,
    ) -> None:
        self.category = ErrorCategory(category)
        self.http_status = http_status
        self.response_body = response_body
        super().__init__(message, **kwargs)

    @property
    def retryable(self) -> bool:
        return self.category in RETRYABLE_ERROR_CATEGORIES


class AuthError(EsgApiError):
    """Token acquisition failed."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.AUTHENTICATION,
        **kwargs,
    ) -> None:
        super().__init__(message, category, **kwargs)


class CredentialsMissingError(AuthError):
    """No client credentials are configured."""
    pass


class CredentialsInvalidError(AuthError):
    """The token endpoint rejected the client credentials (401/403)."""
    pass


class DocumentGenerationError(EsgApiError):
    """The document generator could not produce a submittable document."""

    def __init__(self, message: str, *, errors: list[str] | None = None, **kwargs) -> None:
        self.errors = errors or []
        super().__init__(message, ErrorCategory.VALIDATION, **kwargs)


def categorize_http_status(status_code: int) -> ErrorCategory:
    """Map an HTTP status to the error category downstream retry logic reasons about."""
    if status_code in (401, 403):
        return ErrorCategory.AUTHENTICATION
    if status_code == 429:
        return ErrorCategory.RATE_LIMIT
    if status_code in (400, 422):
        return ErrorCategory.VALIDATION
    if status_code >= 500:
        return ErrorCategory.SERVER_ERROR
    return ErrorCategory.UNKNOWN
