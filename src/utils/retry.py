"""
Retry utilities for API calls.

Provides exponential backoff, server retry-after parsing, and a tenacity
wait strategy that prefers the server's retry-after over local backoff.
"""

import random
from dataclasses import dataclass
from typing import Mapping, Optional

from tenacity import RetryCallState
from tenacity.wait import wait_base

from config.constants import RETRY_BASE_DELAY, RETRY_MAX_DELAY


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 4
    base_delay: float = RETRY_BASE_DELAY
    max_delay: float = RETRY_MAX_DELAY
    exponential_base: float = 2.0
    jitter: bool = True


def calculate_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter: bool = True
) -> float:
    """
    Calculate delay for retry attempt with exponential backoff.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Whether to add random jitter

    Returns:
        Delay in seconds, never above max_delay
    """
    delay = base_delay * (exponential_base ** attempt)
    delay = min(delay, max_delay)

    if jitter:
        # Add random jitter between 0% and 25%, still capped
        delay = min(delay * (1 + random.random() * 0.25), max_delay)

    return delay


def parse_retry_after(headers: Optional[Mapping[str, str]]) -> Optional[float]:
    """
    Read the server-provided retry delay, in seconds.

    `retry-after-ms` wins over `retry-after`. HTTP-date values of
    `retry-after` are not supported and yield None.
    """
    if not headers:
        return None

    raw_ms = headers.get("retry-after-ms")
    if raw_ms is not None:
        try:
            value = float(raw_ms)
            if value >= 0:
                return value / 1000.0
        except ValueError:
            pass

    raw_s = headers.get("retry-after")
    if raw_s is not None:
        try:
            value = float(raw_s)
            if value >= 0:
                return value
        except ValueError:
            return None

    return None


class wait_retry_after(wait_base):
    """
    Tenacity wait: use the failed attempt's `retry_after` when it has one,
    exponential backoff otherwise.
    """

    def __init__(self, config: RetryConfig):
        self.config = config

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return float(retry_after)
        return calculate_delay(
            retry_state.attempt_number - 1,
            self.config.base_delay,
            self.config.max_delay,
            self.config.exponential_base,
            self.config.jitter,
        )
