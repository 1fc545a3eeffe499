"""
Routing Metrics

Tracks routing decisions: success rate, time-to-assignment and strategy usage.
"""

from collections import deque
from typing import Deque, Dict, Iterable, Optional
import time
import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RoutingRecord:
    """Metrics for a single routing decision"""
    capabilities: tuple
    strategy: str
    start_time: float
    end_time: Optional[float] = None
    selected_agent: Optional[str] = None
    success: bool = False

    @property
    def latency_ms(self) -> float:
        """Time to make routing decision (ms)"""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time) * 1000.0

    def to_dict(self) -> Dict:
        return {
            "capabilities": list(self.capabilities),
            "strategy": self.strategy,
            "latency_ms": self.latency_ms,
            "selected_agent": self.selected_agent,
            "success": self.success,
        }


class RoutingMetricsCollector:
    """
    Collects and aggregates routing decisions.

    Keeps a bounded history so a long-running router does not grow without
    limit.
    """

    def __init__(self, max_history: int = 10000):
        self.routing_history: Deque[RoutingRecord] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def start_routing(self, capabilities: Iterable[str], strategy: str) -> RoutingRecord:
        return RoutingRecord(
            capabilities=tuple(capabilities), strategy=strategy, start_time=time.time()
        )

    def complete_routing(
        self, record: RoutingRecord, selected_agent: Optional[str], success: bool
    ) -> None:
        record.end_time = time.time()
        record.selected_agent = selected_agent
        record.success = success

        with self._lock:
            self.routing_history.append(record)

        logger.debug(
            f"Routing completed: agent={selected_agent}, strategy={record.strategy}, "
            f"latency={record.latency_ms:.2f}ms, success={success}"
        )

    def _recent(self, recent_n: Optional[int]):
        with self._lock:
            history = list(self.routing_history)
        if recent_n is not None:
            history = history[-recent_n:]
        return history

    def get_success_rate(self, recent_n: Optional[int] = None) -> float:
        history = self._recent(recent_n)
        if not history:
            return 0.0
        return sum(1 for r in history if r.success) / len(history)

    def get_avg_latency_ms(self, recent_n: Optional[int] = None) -> float:
        history = self._recent(recent_n)
        if not history:
            return 0.0
        return sum(r.latency_ms for r in history) / len(history)

    def get_strategy_distribution(self) -> Dict[str, int]:
        distribution: Dict[str, int] = {}
        for record in self._recent(None):
            distribution[record.strategy] = distribution.get(record.strategy, 0) + 1
        return distribution

    def get_agent_distribution(self) -> Dict[str, int]:
        distribution: Dict[str, int] = {}
        for record in self._recent(None):
            if record.selected_agent:
                distribution[record.selected_agent] = distribution.get(record.selected_agent, 0) + 1
        return distribution

    def get_stats(self) -> Dict:
        """
        Get comprehensive routing statistics.

        Returns:
            Dictionary of statistics
        """
        return {
            "total_routings": len(self.routing_history),
            "success_rate": self.get_success_rate(),
            "avg_latency_ms": self.get_avg_latency_ms(),
            "strategy_distribution": self.get_strategy_distribution(),
            "agent_distribution": self.get_agent_distribution(),
        }

    def clear(self) -> None:
        with self._lock:
            self.routing_history.clear()
