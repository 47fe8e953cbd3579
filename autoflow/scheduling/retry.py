"""Retry backoff."""

from __future__ import annotations

from autoflow.config import DEFAULT_RETRY_BASE_MS
from autoflow.scheduling.types import RetryPolicy


def compute_backoff_delay(attempt: int, policy: RetryPolicy, base_ms: int = DEFAULT_RETRY_BASE_MS) -> int:
    """
    Delay in ms before retry number ``attempt`` (1-based).

    ``min(max_delay, base * multiplier ** (attempt - 1))``
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    delay = base_ms * policy.backoff_multiplier ** (attempt - 1)
    return int(min(policy.max_delay_ms, delay))


def should_retry(retry_count: int, policy: RetryPolicy | None) -> bool:
    """True while fewer than ``max_attempts`` retries have been scheduled."""
    return policy is not None and retry_count < policy.max_attempts
