"""Exponential backoff retry logic for ESG submissions."""

from __future__ import annotations

import random

from esg_pipeline.core.constants import RETRYABLE_ERROR_CATEGORIES, ErrorCategory

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 30.0
MAX_JITTER_SECONDS = 1.0


def should_retry(category: ErrorCategory | str, retry_count: int, max_retries: int) -> bool:
    """Determine if a failed attempt should be retried."""
    if retry_count >= max_retries:
        return False
    return ErrorCategory(category) in RETRYABLE_ERROR_CATEGORIES


def backoff_delay(retry_count: int, rng: random.Random | None = None) -> float:
    """
    Delay before retry number `retry_count` (1-based).

    min(1s * 2^(n-1) + U[0, 1s), 30s)
    """
    uniform = (rng or random).uniform
    exponential = BASE_DELAY_SECONDS * 2 ** max(retry_count - 1, 0)
    return min(exponential + uniform(0, MAX_JITTER_SECONDS), MAX_DELAY_SECONDS)
