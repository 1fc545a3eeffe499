"""
Tests for the circuit breaker and the per-agent health tracker
"""

import logging
import pytest
import sys
import threading
from pathlib import Path

from prometheus_client import REGISTRY

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from health.circuit_breaker import CircuitBreaker, CircuitState
from health.tracker import AgentHealthTracker, HealthState


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        failure_threshold=5, failure_window_seconds=60, cooldown_seconds=30, clock=clock
    )


@pytest.fixture
def tracker(clock):
    return AgentHealthTracker(
        failure_threshold=5, failure_window_seconds=60, cooldown_seconds=30, clock=clock
    )


def trip(target, agent_id=None, count=5):
    for _ in range(count):
        if agent_id is None:
            target.record_failure()
        else:
            target.record_failure(agent_id)


class TestCircuitBreaker:
    def test_starts_closed(self, breaker):
        assert breaker.current_state() == CircuitState.CLOSED
        assert breaker.call_allowed()

    def test_opens_after_threshold(self, breaker):
        trip(breaker, count=4)
        assert breaker.current_state() == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.current_state() == CircuitState.OPEN
        assert not breaker.is_selectable()
        assert not breaker.call_allowed()

    def test_success_resets_consecutive_count(self, breaker):
        trip(breaker, count=4)
        breaker.record_success()
        trip(breaker, count=4)
        assert breaker.current_state() == CircuitState.CLOSED

    def test_old_failures_expire(self, breaker, clock):
        trip(breaker, count=4)
        clock.advance(61)
        breaker.record_failure()
        assert breaker.current_state() == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_half_open_after_cooldown(self, breaker, clock):
        trip(breaker)
        clock.advance(29.9)
        assert breaker.current_state() == CircuitState.OPEN

        clock.advance(0.1)
        assert breaker.current_state() == CircuitState.HALF_OPEN

    def test_half_open_allows_single_probe(self, breaker, clock):
        trip(breaker)
        clock.advance(30)

        assert breaker.call_allowed()
        assert not breaker.call_allowed()
        assert not breaker.is_selectable()

    def test_probe_success_closes(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        breaker.call_allowed()
        breaker.record_success()

        assert breaker.current_state() == CircuitState.CLOSED
        assert breaker.call_allowed()

    def test_probe_failure_reopens(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        breaker.call_allowed()
        breaker.record_failure()

        assert breaker.current_state() == CircuitState.OPEN
        clock.advance(29)
        assert breaker.current_state() == CircuitState.OPEN
        clock.advance(1)
        assert breaker.current_state() == CircuitState.HALF_OPEN

    def test_release_frees_probe(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        assert breaker.call_allowed()

        breaker.release()
        assert breaker.current_state() == CircuitState.HALF_OPEN
        assert breaker.call_allowed()

    def test_events_recorded(self, breaker, clock):
        trip(breaker)
        clock.advance(30)
        breaker.current_state()

        transitions = [(e.from_state, e.to_state) for e in breaker.get_events()]
        assert transitions == [
            (CircuitState.CLOSED, CircuitState.OPEN),
            (CircuitState.OPEN, CircuitState.HALF_OPEN),
        ]
        assert len(breaker.get_events(limit=1)) == 1

    def test_manual_reset(self, breaker):
        trip(breaker)
        breaker.reset()
        assert breaker.current_state() == CircuitState.CLOSED
        assert breaker.failure_count == 0


class TestAgentHealthTracker:
    def test_agents_are_independent(self, tracker):
        trip(tracker, "a")
        assert tracker.circuit_state("a") == CircuitState.OPEN
        assert tracker.circuit_state("b") == CircuitState.CLOSED
        assert tracker.is_selectable("b")

    def test_open_agent_not_selectable_until_cooldown(self, tracker, clock):
        trip(tracker, "a")
        assert not tracker.is_selectable("a")
        assert not tracker.begin_call("a")

        clock.advance(30)
        assert tracker.is_selectable("a")
        assert tracker.begin_call("a")
        # Probe slot taken
        assert not tracker.is_selectable("a")
        assert not tracker.begin_call("a")

    def test_probe_outcomes(self, tracker, clock):
        trip(tracker, "a")
        clock.advance(30)
        tracker.begin_call("a")
        tracker.record_success("a")
        assert tracker.health_state("a") == HealthState.HEALTHY

        trip(tracker, "a")
        clock.advance(30)
        tracker.begin_call("a")
        tracker.record_failure("a")
        assert tracker.health_state("a") == HealthState.CIRCUIT_OPEN

    def test_release_without_outcome(self, tracker, clock):
        trip(tracker, "a")
        clock.advance(30)
        tracker.begin_call("a")
        tracker.release("a")
        assert tracker.circuit_state("a") == CircuitState.HALF_OPEN
        assert tracker.is_selectable("a")

    def test_half_open_transition_reported(self, tracker, clock, caplog):
        def half_open_count():
            value = REGISTRY.get_sample_value(
                "agent_router_circuit_transitions_total",
                {"agent_id": "lazy-agent", "to_state": "half_open"},
            )
            return value or 0.0

        before = half_open_count()
        trip(tracker, "lazy-agent")
        clock.advance(30)

        with caplog.at_level(logging.INFO, logger="health.tracker"):
            assert tracker.is_selectable("lazy-agent")
            tracker.begin_call("lazy-agent")

        assert half_open_count() == before + 1
        assert "lazy-agent: open -> half_open" in caplog.text

    def test_health_states(self, tracker):
        assert tracker.health_state("a") == HealthState.HEALTHY
        tracker.record_failure("a")
        assert tracker.health_state("a") == HealthState.DEGRADED
        trip(tracker, "a", count=4)
        assert tracker.health_state("a") == HealthState.CIRCUIT_OPEN

    def test_snapshot(self, tracker):
        tracker.record_failure("a")
        tracker.record_success("b")
        assert tracker.snapshot() == {
            "a": {"circuit": "closed", "failures": 1},
            "b": {"circuit": "closed", "failures": 0},
        }

    def test_reset(self, tracker):
        trip(tracker, "a")
        tracker.reset("a")
        assert tracker.is_selectable("a")

    def test_from_config(self, clock):
        from core.config import RouterConfig

        config = RouterConfig(failure_threshold=2, cooldown_seconds=5)
        tracker = AgentHealthTracker.from_config(config, clock=clock)
        trip(tracker, "a", count=2)
        assert tracker.circuit_state("a") == CircuitState.OPEN
        clock.advance(5)
        assert tracker.circuit_state("a") == CircuitState.HALF_OPEN

    def test_concurrent_failures_open_once(self, tracker):
        def worker():
            for _ in range(50):
                tracker.record_failure("shared")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert tracker.circuit_state("shared") == CircuitState.OPEN
        assert tracker.failure_threshold == 5
