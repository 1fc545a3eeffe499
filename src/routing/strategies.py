"""
Routing Strategies

Each strategy picks one agent from an already-filtered, non-empty candidate
list. Stateless strategies are plain ranking functions; round robin and
sticky sessions own shared state. Round robin locks per capability set;
sticky sessions use a bounded LRU map and striped locks.
"""

from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Tuple
from enum import Enum
import logging
import threading

from .capabilities import CapabilitySet
from .manifests import AgentManifest

logger = logging.getLogger(__name__)

# Latency floor (ms) so agents reporting 0 latency do not divide by zero.
# Agents without latency data still rank after every measured agent.
MIN_LATENCY_MS = 1.0


class RoutingStrategy(Enum):
    """Supported routing strategies"""

    CAPABILITY_MATCH = "capability_match"
    PERFORMANCE_BASED = "performance_based"
    COST_OPTIMIZED = "cost_optimized"
    ROUND_ROBIN = "round_robin"
    STICKY_SESSION = "sticky_session"

    @classmethod
    def parse(cls, value) -> "RoutingStrategy":
        if isinstance(value, RoutingStrategy):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown routing strategy '{value}' (expected one of: {valid})")


def capability_match_key(agent: AgentManifest) -> Tuple[int, float, str]:
    """Tightest capability fit, then highest success rate, then id"""
    return (len(agent.capabilities), -agent.success_rate, agent.agent_id)


def performance_score(agent: AgentManifest) -> float:
    """success_rate / latency; higher is better"""
    return agent.success_rate / max(agent.avg_latency_ms, MIN_LATENCY_MS)


def performance_key(agent: AgentManifest) -> Tuple[bool, float, str]:
    """Measured agents first, then best success_rate / latency, then id"""
    return (agent.avg_latency_ms <= 0, -performance_score(agent), agent.agent_id)


def cost_key(agent: AgentManifest) -> Tuple[float, float, str]:
    """Lowest cost, then highest success rate, then id"""
    return (agent.cost_per_call, -agent.success_rate, agent.agent_id)


def select_capability_match(candidates: List[AgentManifest]) -> AgentManifest:
    return min(candidates, key=capability_match_key)


def select_performance_based(candidates: List[AgentManifest]) -> AgentManifest:
    return min(candidates, key=performance_key)


def select_cost_optimized(candidates: List[AgentManifest]) -> AgentManifest:
    return min(candidates, key=cost_key)


RANKED_STRATEGIES: Dict[RoutingStrategy, Callable[[List[AgentManifest]], AgentManifest]] = {
    RoutingStrategy.CAPABILITY_MATCH: select_capability_match,
    RoutingStrategy.PERFORMANCE_BASED: select_performance_based,
    RoutingStrategy.COST_OPTIMIZED: select_cost_optimized,
}


class RoundRobinSelector:
    """
    Rotates through eligible agents per required capability set.

    The cursor for each capability set advances on every selection and wraps
    around the current eligible list (ordered by agent id).
    """

    def __init__(self):
        self._cursors: Dict[CapabilitySet, int] = {}
        self._locks: Dict[CapabilitySet, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: CapabilitySet) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._registry_lock:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    def select(self, required: CapabilitySet, candidates: List[AgentManifest]) -> AgentManifest:
        ordered = sorted(candidates, key=lambda m: m.agent_id)
        with self._lock_for(required):
            cursor = self._cursors.get(required, 0)
            selected = ordered[cursor % len(ordered)]
            self._cursors[required] = cursor + 1
        return selected

    def cursor(self, required: CapabilitySet) -> int:
        return self._cursors.get(required, 0)

    def reset(self) -> None:
        with self._registry_lock:
            self._cursors.clear()
            self._locks.clear()


class StickySessionSelector:
    """
    Keeps a session on the agent it was first routed to.

    Falls back to capability_match when the session is new or its agent is
    no longer eligible, and records the new assignment. Sessions share a
    fixed set of striped locks; the least recently used sessions are
    forgotten once max_sessions is exceeded.
    """

    def __init__(self, max_sessions: int = 10000, lock_stripes: int = 64):
        self.max_sessions = max_sessions
        self._assignments: Dict[str, str] = OrderedDict()
        self._stripes = [threading.Lock() for _ in range(lock_stripes)]
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        return self._stripes[hash(session_id) % len(self._stripes)]

    def select(
        self, session_id: Optional[str], candidates: List[AgentManifest]
    ) -> Tuple[AgentManifest, bool]:
        """
        Pick the session's agent.

        Returns:
            (agent, reused) where reused is True if a prior assignment held
        """
        if not session_id:
            logger.warning("sticky_session requested without a session id, using capability_match")
            return select_capability_match(candidates), False

        by_id = {m.agent_id: m for m in candidates}

        with self._lock_for(session_id):
            with self._registry_lock:
                previous = self._assignments.get(session_id)
                if previous is not None:
                    self._assignments.move_to_end(session_id)
            if previous is not None and previous in by_id:
                return by_id[previous], True

            selected = select_capability_match(candidates)
            with self._registry_lock:
                self._assignments[session_id] = selected.agent_id
                self._assignments.move_to_end(session_id)
                while len(self._assignments) > self.max_sessions:
                    self._assignments.popitem(last=False)

        if previous is not None:
            logger.info(
                f"Session {session_id} moved from {previous} to {selected.agent_id} "
                f"(previous agent no longer eligible)"
            )
        return selected, False

    def assignment(self, session_id: str) -> Optional[str]:
        with self._registry_lock:
            return self._assignments.get(session_id)

    def session_count(self) -> int:
        return len(self._assignments)
