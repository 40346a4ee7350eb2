"""
Utility functions for the AI validation pipeline.
"""

from utils.json_extractor import recover_json
from utils.rate_limiter import TokenBudgetLimiter, estimate_tokens
from utils.retry import (
    RetryConfig,
    calculate_delay,
    parse_retry_after,
    wait_retry_after,
)

__all__ = [
    'recover_json',
    'TokenBudgetLimiter',
    'estimate_tokens',
    'RetryConfig',
    'calculate_delay',
    'parse_retry_after',
    'wait_retry_after',
]
