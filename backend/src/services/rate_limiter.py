"""
Per-client rate limiting for the public endpoints.

Sliding-window counters keyed by (bucket, client identity), kept in process
memory. Each bucket has its own budget (see ``RATE_LIMITS``). If the limiter
itself fails, requests are let through when ``fail_open`` is set.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple

from core.config import RATE_LIMIT_FAIL_OPEN
from core.constants import RATE_LIMITS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: Optional[float] = None


class RateLimiter:
    """
    In-memory sliding-window rate limiter.

    A single-process store; a horizontally scaled deployment would back this
    with a shared store behind the same ``check`` interface.
    """

    def __init__(
        self,
        budgets: Mapping[str, Tuple[int, int]] = RATE_LIMITS,
        fail_open: bool = RATE_LIMIT_FAIL_OPEN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.budgets = dict(budgets)
        self.fail_open = fail_open
        self._clock = clock
        self._requests: Dict[Tuple[str, str], Deque[float]] = {}
        self._lock = threading.Lock()

    def _check(self, bucket: str, identifier: str) -> RateLimitDecision:
        max_requests, window_seconds = self.budgets[bucket]
        now = self._clock()
        window_start = now - window_seconds

        with self._lock:
            history = self._requests.setdefault((bucket, identifier), deque())
            # Remove old requests outside the window
            while history and history[0] <= window_start:
                history.popleft()

            if len(history) >= max_requests:
                retry_after = history[0] + window_seconds - now
                return RateLimitDecision(False, max_requests, 0, max(retry_after, 0.0))

            history.append(now)
            return RateLimitDecision(True, max_requests, max_requests - len(history))

    def check(self, bucket: str, identifier: str) -> RateLimitDecision:
        """
        Record one request from ``identifier`` against ``bucket``.

        Args:
            bucket: Budget name, e.g. ``"booking"`` or ``"cancellation"``
            identifier: Client identity (usually the client IP)

        Returns:
            RateLimitDecision; ``allowed`` is False once the budget is spent
        """
        try:
            return self._check(bucket, identifier)
        except Exception as e:
            if not self.fail_open:
                raise
            logger.exception(f"Rate limiter failed for bucket {bucket!r}; allowing request: {e}")
            return RateLimitDecision(True, 0, 0)

    def cleanup(self) -> int:
        """Drop identifiers with no requests left in their window. Returns the number dropped."""
        now = self._clock()
        removed = 0
        with self._lock:
            for key in list(self._requests):
                bucket, _ = key
                window_seconds = self.budgets.get(bucket, (0, 0))[1]
                history = self._requests[key]
                while history and history[0] <= now - window_seconds:
                    history.popleft()
                if not history:
                    del self._requests[key]
                    removed += 1
        if removed:
            logger.debug(f"Rate limiter cleanup removed {removed} idle client(s)")
        return removed

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
