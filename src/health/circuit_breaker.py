"""
Per-agent circuit breaker.

closed -> open after N consecutive failures inside a sliding window,
open -> half_open after a cool-down, half_open -> closed on the probe's
success or back to open on its failure.
"""

from dataclasses import dataclass
from typing import Callable, Deque, List, Optional
from collections import deque
from enum import Enum
import time


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Tripped, excluded from selection
    HALF_OPEN = "half_open"  # Single probe allowed


@dataclass
class CircuitBreakerEvent:
    """Record of a circuit state transition."""

    timestamp: float
    from_state: CircuitState
    to_state: CircuitState
    reason: str


class CircuitBreaker:
    """
    Circuit breaker for a single agent endpoint.

    Not thread-safe on its own; AgentHealthTracker guards each breaker with
    its own lock.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        failure_window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        max_events: int = 100,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            failure_window_seconds: Failures older than this no longer count
            cooldown_seconds: Seconds to wait before allowing a probe
            clock: Monotonic time source (injectable for tests)
            max_events: Number of transition events retained
        """
        self.failure_threshold = failure_threshold
        self.failure_window_seconds = failure_window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

        self.state = CircuitState.CLOSED
        self.failure_times: Deque[float] = deque()
        self.trip_time: Optional[float] = None
        self.probe_in_flight = False

        self.events: Deque[CircuitBreakerEvent] = deque(maxlen=max_events)

    @property
    def failure_count(self) -> int:
        self._expire_failures()
        return len(self.failure_times)

    def _expire_failures(self) -> None:
        cutoff = self.clock() - self.failure_window_seconds
        while self.failure_times and self.failure_times[0] < cutoff:
            self.failure_times.popleft()

    def _cooldown_elapsed(self) -> bool:
        return self.trip_time is not None and self.clock() - self.trip_time >= self.cooldown_seconds

    def current_state(self) -> CircuitState:
        """Get current state, applying the open -> half_open transition"""
        if self.state == CircuitState.OPEN and self._cooldown_elapsed():
            self._transition(CircuitState.HALF_OPEN, "Cool-down elapsed")
        return self.state

    def is_open(self) -> bool:
        return self.current_state() == CircuitState.OPEN

    def is_selectable(self) -> bool:
        """Closed, or half-open with the probe slot still free"""
        state = self.current_state()
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN:
            return not self.probe_in_flight
        return False

    def call_allowed(self) -> bool:
        """
        Claim permission for one call.

        In half-open state only one caller gets through until the probe
        reports back.

        Returns:
            True if the call should proceed
        """
        state = self.current_state()

        if state == CircuitState.CLOSED:
            return True

        if state == CircuitState.HALF_OPEN and not self.probe_in_flight:
            self.probe_in_flight = True
            return True

        return False

    def record_success(self) -> None:
        self.failure_times.clear()
        if self.state == CircuitState.HALF_OPEN:
            self.probe_in_flight = False
            self._transition(CircuitState.CLOSED, "Probe succeeded")
            self.trip_time = None

    def record_failure(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.probe_in_flight = False
            self._trip("Probe failed")
            return

        self.failure_times.append(self.clock())
        self._expire_failures()

        if self.state == CircuitState.CLOSED and len(self.failure_times) >= self.failure_threshold:
            self._trip(f"{len(self.failure_times)} consecutive failures")

    def release(self) -> None:
        """Give back a claimed probe slot without recording an outcome"""
        self.probe_in_flight = False

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        if self.state != CircuitState.CLOSED:
            self._transition(CircuitState.CLOSED, "Manual reset")
        self.failure_times.clear()
        self.trip_time = None
        self.probe_in_flight = False

    def get_events(self, limit: Optional[int] = None) -> List[CircuitBreakerEvent]:
        events = list(self.events)
        if limit:
            return events[-limit:]
        return events

    def _trip(self, reason: str) -> None:
        self.trip_time = self.clock()
        self.failure_times.clear()
        self._transition(CircuitState.OPEN, reason)

    def _transition(self, to_state: CircuitState, reason: str) -> None:
        self.events.append(
            CircuitBreakerEvent(
                timestamp=self.clock(), from_state=self.state, to_state=to_state, reason=reason
            )
        )
        self.state = to_state
