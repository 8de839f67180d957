"""Token bucket rate limiter used by the rate-limiting sampler."""

from __future__ import annotations

import threading
import time
from typing import Optional


class RateLimiter:
    """
    Token bucket rate limiter.

    Features:
    - Token bucket algorithm for smooth rate limiting
    - Never blocks: a request without credit is refused immediately
    - Thread-safe implementation
    """

    def __init__(
        self,
        credits_per_second: float,
        max_balance: Optional[float] = None,
    ):
        """
        Initialize rate limiter.

        Args:
            credits_per_second: Refill rate of the bucket
            max_balance: Bucket capacity (defaults to one second of credit, at least 1)
        """
        if credits_per_second < 0:
            raise ValueError("credits_per_second must be >= 0")
        self.credits_per_second = credits_per_second
        self.max_balance = max_balance if max_balance is not None else max(credits_per_second, 1.0)

        # Token bucket state
        self._balance: float = self.max_balance
        self._last_refill_time: float = time.monotonic()
        self._lock = threading.Lock()

        # Stats
        self._total_requests = 0
        self._refused_requests = 0

    def check_credit(self, cost: float = 1.0) -> bool:
        """
        Try to spend ``cost`` credits.

        Returns:
            True if credit was available, False otherwise
        """
        with self._lock:
            self._total_requests += 1
            self._refill()
            if self._balance >= cost:
                self._balance -= cost
                return True
            self._refused_requests += 1
            return False

    def _refill(self) -> None:
        """Refill tokens based on elapsed time (token bucket algorithm)."""
        now = time.monotonic()
        elapsed = now - self._last_refill_time

        if elapsed > 0:
            self._balance = min(self.max_balance, self._balance + elapsed * self.credits_per_second)
            self._last_refill_time = now

    def get_stats(self) -> dict:
        """Get rate limiting statistics."""
        with self._lock:
            refusal_rate = (self._refused_requests / self._total_requests * 100) if self._total_requests > 0 else 0
            return {
                "credits_per_second": self.credits_per_second,
                "total_requests": self._total_requests,
                "refused_requests": self._refused_requests,
                "refusal_rate_percent": round(refusal_rate, 2),
                "current_balance": round(self._balance, 2),
            }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        with self._lock:
            self._total_requests = 0
            self._refused_requests = 0
