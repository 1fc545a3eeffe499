"""
Tests for the Routing Strategy Engine

Tests eligibility filtering and every routing strategy.
"""

import pytest
import sys
import threading
from collections import Counter
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.errors import InvalidRequest, NoEligibleAgent
from health.tracker import AgentHealthTracker
from routing.capabilities import CapabilitySet
from routing.filters import EligibilityFilter
from routing.manifests import AgentManifest
from routing.router import RoutingStrategyEngine
from routing.strategies import (
    RoutingStrategy,
    RoundRobinSelector,
    StickySessionSelector,
    performance_score,
)


def agent(agent_id, caps, **kwargs):
    return AgentManifest(agent_id=agent_id, capabilities=caps, **kwargs)


@pytest.fixture
def tracker(clock):
    return AgentHealthTracker(failure_threshold=5, cooldown_seconds=30, clock=clock)


@pytest.fixture
def engine(tracker):
    return RoutingStrategyEngine(eligibility_filter=EligibilityFilter(tracker))


@pytest.fixture
def pool():
    return [
        agent("fast", ["x"], success_rate=0.9, avg_latency_ms=100, cost_per_call=0.05),
        agent("cheap", ["x", "y"], success_rate=0.8, avg_latency_ms=400, cost_per_call=0.01),
        agent("reliable", ["x", "y", "z"], success_rate=0.99, avg_latency_ms=200, cost_per_call=0.10),
    ]


class TestEligibilityFilter:
    def test_requires_superset(self, pool):
        eligible = EligibilityFilter().filter(["x", "y"], pool)
        assert [m.agent_id for m in eligible] == ["cheap", "reliable"]

    def test_exclusions(self, pool):
        eligible = EligibilityFilter().filter(["x"], pool, exclude=["fast"])
        assert [m.agent_id for m in eligible] == ["cheap", "reliable"]

    def test_open_circuit_excluded(self, pool, tracker):
        for _ in range(5):
            tracker.record_failure("fast")
        eligible = EligibilityFilter(tracker).filter(["x"], pool)
        assert "fast" not in [m.agent_id for m in eligible]


class TestCapabilityMatch:
    def test_tighter_fit_wins(self, engine):
        """A: {x}, B: {x, y}, task needs {x} -> A"""
        agents = [agent("B", ["x", "y"]), agent("A", ["x"])]
        decision = engine.select({"x"}, "capability_match", agents)
        assert decision.agent_id == "A"

    def test_tie_broken_by_success_rate_then_id(self, engine):
        agents = [
            agent("b", ["x"], success_rate=0.9),
            agent("c", ["x"], success_rate=0.95),
            agent("a", ["x"], success_rate=0.95),
        ]
        assert engine.select(["x"], "capability_match", agents).agent_id == "a"

    def test_default_strategy(self, engine, pool):
        decision = engine.select(["x"], None, pool)
        assert decision.strategy == RoutingStrategy.CAPABILITY_MATCH
        assert decision.agent_id == "fast"


class TestRankedStrategies:
    def test_performance_based(self, engine, pool):
        # fast: 0.9/100, cheap: 0.8/400, reliable: 0.99/200
        assert engine.select(["x"], "performance_based", pool).agent_id == "fast"

    def test_performance_zero_latency_does_not_divide_by_zero(self):
        assert performance_score(agent("a", ["x"], success_rate=0.5, avg_latency_ms=0)) == 0.5

    def test_performance_unmeasured_latency_ranks_last(self, engine, pool):
        unmeasured = agent("new", ["x"], success_rate=1.0, avg_latency_ms=0)
        assert engine.select(["x"], "performance_based", pool + [unmeasured]).agent_id == "fast"

        others = [agent("u1", ["x"], success_rate=0.7), agent("u2", ["x"], success_rate=0.9)]
        assert engine.select(["x"], "performance_based", others).agent_id == "u2"

    def test_cost_optimized(self, engine, pool):
        assert engine.select(["x"], "cost_optimized", pool).agent_id == "cheap"

    def test_strategy_parsing_is_lenient_on_case(self, engine, pool):
        assert engine.select(["x"], " COST_OPTIMIZED ", pool).agent_id == "cheap"

    def test_unknown_strategy(self, engine, pool):
        with pytest.raises(InvalidRequest) as exc:
            engine.select(["x"], "fastest", pool)
        assert exc.value.field == "strategy"


class TestRoundRobin:
    def test_rotates_and_wraps(self, engine, pool):
        picks = [engine.select(["x"], "round_robin", pool).agent_id for _ in range(4)]
        assert picks == ["cheap", "fast", "reliable", "cheap"]

    def test_cursor_per_capability_set(self, engine, pool):
        engine.select(["x"], "round_robin", pool)
        first_xy = engine.select(["x", "y"], "round_robin", pool).agent_id
        assert first_xy == "cheap"
        assert engine.round_robin.cursor(CapabilitySet.of("y", "x")) == 1

    def test_concurrent_selection_is_balanced(self, pool):
        selector = RoundRobinSelector()
        required = CapabilitySet.of("x")
        picks = []
        lock = threading.Lock()

        def worker():
            for _ in range(100):
                chosen = selector.select(required, pool).agent_id
                with lock:
                    picks.append(chosen)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert selector.cursor(required) == 600
        assert set(Counter(picks).values()) == {200}


class TestStickySession:
    def test_reuses_previous_agent(self, engine, pool):
        first = engine.select(["x"], "sticky_session", pool, session_id="s1")
        assert not first.session_reused

        # Even a better-fitting agent does not steal the session
        second = engine.select(["x"], "sticky_session", pool + [agent("aaa", ["x"])], session_id="s1")
        assert second.agent_id == first.agent_id
        assert second.session_reused

    def test_falls_back_when_agent_ineligible(self, engine, pool):
        first = engine.select(["x"], "sticky_session", pool, session_id="s1")
        moved = engine.select(["x"], "sticky_session", pool, session_id="s1", exclude=[first.agent_id])
        assert moved.agent_id != first.agent_id
        assert not moved.session_reused
        assert engine.sticky.assignment("s1") == moved.agent_id

    def test_without_session_id(self, engine, pool):
        decision = engine.select(["x"], "sticky_session", pool)
        assert decision.agent_id == "fast"
        assert engine.sticky.assignment("") is None

    def test_least_recent_sessions_forgotten(self, pool):
        sticky = StickySessionSelector(max_sessions=2)
        sticky.select("s1", pool)
        sticky.select("s2", pool)
        sticky.select("s1", pool)
        sticky.select("s3", pool)

        assert sticky.session_count() == 2
        assert sticky.assignment("s2") is None
        assert sticky.assignment("s1") == "fast"
        assert sticky.assignment("s3") == "fast"


class TestNoEligibleAgent:
    def test_no_capable_agent(self, engine, pool):
        with pytest.raises(NoEligibleAgent) as exc:
            engine.select(["image_generation"], "capability_match", pool)
        assert exc.value.capabilities == ["image_generation"]
        assert "No suitable agents found" in str(exc.value)

    def test_all_circuits_open(self, engine, pool, tracker):
        for manifest in pool:
            for _ in range(5):
                tracker.record_failure(manifest.agent_id)

        with pytest.raises(NoEligibleAgent):
            engine.select(["x"], "capability_match", pool)

    def test_empty_candidate_list(self, engine):
        with pytest.raises(NoEligibleAgent):
            engine.select(["x"], "round_robin", [])

    def test_empty_capabilities_invalid(self, engine, pool):
        with pytest.raises(InvalidRequest):
            engine.select([], "capability_match", pool)


class TestRoutingMetrics:
    def test_decisions_recorded(self, engine, pool):
        engine.select(["x"], "cost_optimized", pool)
        with pytest.raises(NoEligibleAgent):
            engine.select(["nothing"], "cost_optimized", pool)

        stats = engine.get_stats()["routing_metrics"]
        assert stats["total_routings"] == 2
        assert stats["success_rate"] == pytest.approx(0.5)
