# retry.py — Retry policy for outbound network calls
#
# Telegram and the LLM provider are flaky enough to warrant backoff.
# The policy is an explicit object handed to those clients; the
# conversation core itself never retries.

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: delay = base_delay * 2**attempt + uniform(0, jitter)."""

    max_attempts: int = 3
    base_delay: float = 1.0
    jitter: float = 0.0
    sleep: Callable[[float], Any] = field(default=time.sleep, repr=False, compare=False)

    def delay_for(self, attempt: int) -> float:
        extra = random.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return self.base_delay * (2 ** attempt) + extra

    def call(self, fn: Callable[[], T], label: str = "call") -> T:
        """Run fn until it succeeds or attempts run out; re-raise the last error."""
        attempts = max(1, self.max_attempts)
        last_exc: Exception | None = None
        for attempt in range(attempts):
            try:
                return fn()
            except Exception as exc:
                last_exc = exc
                logger.warning("%s attempt %d/%d failed: %s", label, attempt + 1, attempts, exc)
                if attempt < attempts - 1:
                    self.sleep(self.delay_for(attempt))
        assert last_exc is not None
        raise last_exc


NO_RETRY = RetryPolicy(max_attempts=1)
