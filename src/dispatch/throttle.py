"""
Per-tenant submission throttling.

Sliding-window limiter: a tenant may submit at most `limit` tasks in any
`window_seconds` span.
"""

from collections import deque
from typing import Callable, Deque, Dict
import logging
import threading
import time

from core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Rate limiter to ensure fair use of the router.

    Implements sliding window rate limiting per tenant.
    """

    def __init__(
        self,
        limit_per_tenant: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter.

        Args:
            limit_per_tenant: Maximum submissions per tenant in the window
            window_seconds: Window length in seconds
            clock: Time source (injectable for tests)
        """
        self.limit_per_tenant = limit_per_tenant
        self.window_seconds = window_seconds
        self.clock = clock

        self._requests: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def check(self, tenant_id: str) -> None:
        """
        Record a submission, or reject it.

        Raises:
            RateLimitExceeded: Tenant is over its limit; retry_after says when
                the oldest request in the window expires
        """
        now = self.clock()
        cutoff = now - self.window_seconds

        with self._lock:
            times = self._requests.setdefault(tenant_id, deque())
            while times and times[0] <= cutoff:
                times.popleft()

            if len(times) >= self.limit_per_tenant:
                retry_after = max(0.0, times[0] + self.window_seconds - now)
                logger.warning(f"Tenant {tenant_id} rate limited, retry after {retry_after:.1f}s")
                raise RateLimitExceeded(tenant_id, retry_after)

            times.append(now)

    def remaining(self, tenant_id: str) -> int:
        now = self.clock()
        with self._lock:
            times = self._requests.get(tenant_id, ())
            used = sum(1 for t in times if t > now - self.window_seconds)
        return max(0, self.limit_per_tenant - used)

    def reset(self, tenant_id: str) -> None:
        with self._lock:
            self._requests.pop(tenant_id, None)
