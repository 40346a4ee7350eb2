"""
Rate limiting for Azure OpenAI deployments.

Azure meters each deployment in tokens per minute (TPM) and requests per
minute (RPM). TokenBudgetLimiter keeps a sliding one-minute window of
recent calls and delays a call until both budgets have room for it.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Tuple

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token estimate (about 4 characters per token)."""
    return max(1, len(text) // 4)


@dataclass
class TokenBudgetLimiter:
    """
    Sliding window TPM/RPM limiter.

    A zero limit disables that dimension. A single call larger than the
    whole TPM budget is let through once the window is empty.
    """
    tokens_per_minute: int = 0
    requests_per_minute: int = 0
    window_seconds: float = 60.0

    _calls: Deque[Tuple[float, int]] = field(default_factory=deque, repr=False)
    _lock: Optional[asyncio.Lock] = field(default=None, repr=False)

    @property
    def enabled(self) -> bool:
        return self.tokens_per_minute > 0 or self.requests_per_minute > 0

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._calls and self._calls[0][0] <= cutoff:
            self._calls.popleft()

    def _wait_time(self, tokens: int, now: float) -> float:
        """Seconds until a call of `tokens` fits, 0.0 if it fits now."""
        if not self._calls:
            return 0.0

        wait = 0.0
        if self.requests_per_minute and len(self._calls) >= self.requests_per_minute:
            oldest = self._calls[len(self._calls) - self.requests_per_minute][0]
            wait = max(wait, oldest + self.window_seconds - now)

        if self.tokens_per_minute:
            used = sum(t for _, t in self._calls)
            if used + tokens > self.tokens_per_minute:
                # Release the oldest calls until the new one fits
                freed = 0
                for ts, t in self._calls:
                    freed += t
                    if used - freed + tokens <= self.tokens_per_minute:
                        wait = max(wait, ts + self.window_seconds - now)
                        break
                else:
                    wait = max(wait, self._calls[-1][0] + self.window_seconds - now)

        return max(0.0, wait)

    async def acquire(self, tokens: int = 1) -> float:
        """
        Reserve budget for one call, waiting if necessary.

        Args:
            tokens: Estimated tokens (prompt + completion budget) of the call

        Returns:
            Seconds spent waiting
        """
        if not self.enabled:
            return 0.0
        if self._lock is None:
            self._lock = asyncio.Lock()

        waited = 0.0
        async with self._lock:
            while True:
                now = time.monotonic()
                self._prune(now)
                wait = self._wait_time(tokens, now)
                if wait <= 0:
                    self._calls.append((now, tokens))
                    return waited
                logger.info(f"Azure budget reached, waiting {wait:.1f}s ({tokens} tokens requested)")
                await asyncio.sleep(wait)
                waited += wait
