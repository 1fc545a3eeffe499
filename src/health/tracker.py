"""
Agent Health Tracker

Owns one circuit breaker and one lock per agent id. Consumed by the
eligibility filter (is the agent selectable?) and by the dispatch
coordinator (claim a call, report its outcome).
"""

from typing import Callable, Dict, Optional
from enum import Enum
import logging
import threading
import time

from .circuit_breaker import CircuitBreaker, CircuitState
from observability import metrics as obs

logger = logging.getLogger(__name__)


class HealthState(Enum):
    """Agent health as exposed to routing and callers"""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CIRCUIT_OPEN = "circuit_open"


class AgentHealthTracker:
    """
    Thread-safe per-agent health tracking.

    Locks are sharded per agent so unrelated agents never contend.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        failure_window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.failure_window_seconds = failure_window_seconds
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

        self._breakers: Dict[str, CircuitBreaker] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_config(cls, config, clock: Callable[[], float] = time.monotonic) -> "AgentHealthTracker":
        return cls(
            failure_threshold=config.failure_threshold,
            failure_window_seconds=config.failure_window_seconds,
            cooldown_seconds=config.cooldown_seconds,
            clock=clock,
        )

    def _entry(self, agent_id: str):
        breaker = self._breakers.get(agent_id)
        if breaker is None:
            with self._registry_lock:
                breaker = self._breakers.get(agent_id)
                if breaker is None:
                    breaker = CircuitBreaker(
                        failure_threshold=self.failure_threshold,
                        failure_window_seconds=self.failure_window_seconds,
                        cooldown_seconds=self.cooldown_seconds,
                        clock=self.clock,
                    )
                    self._locks[agent_id] = threading.Lock()
                    self._breakers[agent_id] = breaker
        return breaker, self._locks[agent_id]

    def is_selectable(self, agent_id: str) -> bool:
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            selectable = breaker.is_selectable()
            after = breaker.state
        self._report_transition(agent_id, before, after)
        return selectable

    def begin_call(self, agent_id: str) -> bool:
        """
        Claim permission to dispatch to an agent.

        Returns:
            False if the circuit is open or its half-open probe is taken
        """
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            allowed = breaker.call_allowed()
            state = breaker.state
        self._report_transition(agent_id, before, state)
        if not allowed:
            logger.debug(f"Call to {agent_id} blocked, circuit is {state.value}")
        return allowed

    def record_success(self, agent_id: str) -> None:
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            breaker.record_success()
            after = breaker.state
        self._report_transition(agent_id, before, after)

    def record_failure(self, agent_id: str) -> None:
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            breaker.record_failure()
            after = breaker.state
            failures = len(breaker.failure_times)
        obs.agent_failures_total.labels(agent_id=agent_id).inc()
        self._report_transition(agent_id, before, after)
        if after == CircuitState.CLOSED:
            logger.info(f"Recorded failure for {agent_id} ({failures}/{self.failure_threshold})")

    def release(self, agent_id: str) -> None:
        """Free a claimed probe without counting an outcome (cancellation)"""
        breaker, lock = self._entry(agent_id)
        with lock:
            breaker.release()

    def reset(self, agent_id: str) -> None:
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            breaker.reset()
        self._report_transition(agent_id, before, CircuitState.CLOSED)

    def circuit_state(self, agent_id: str) -> CircuitState:
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            state = breaker.current_state()
        self._report_transition(agent_id, before, state)
        return state

    def health_state(self, agent_id: str) -> HealthState:
        breaker, lock = self._entry(agent_id)
        with lock:
            before = breaker.state
            state = breaker.current_state()
            failures = breaker.failure_count
        self._report_transition(agent_id, before, state)
        if state == CircuitState.OPEN:
            return HealthState.CIRCUIT_OPEN
        if state == CircuitState.HALF_OPEN or failures > 0:
            return HealthState.DEGRADED
        return HealthState.HEALTHY

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """Health of every tracked agent"""
        with self._registry_lock:
            agent_ids = list(self._breakers)
        result = {}
        for agent_id in agent_ids:
            breaker, lock = self._entry(agent_id)
            with lock:
                before = breaker.state
                state = breaker.current_state()
                failures = breaker.failure_count
            self._report_transition(agent_id, before, state)
            result[agent_id] = {"circuit": state.value, "failures": failures}
        return result

    def _report_transition(
        self, agent_id: str, before: CircuitState, after: Optional[CircuitState]
    ) -> None:
        if after is None or before == after:
            return
        obs.circuit_transitions_total.labels(agent_id=agent_id, to_state=after.value).inc()
        if after == CircuitState.OPEN:
            logger.warning(f"Circuit opened for agent {agent_id} (was {before.value})")
        else:
            logger.info(f"Circuit for agent {agent_id}: {before.value} -> {after.value}")
