"""
Routing Strategy Engine

Combines eligibility filtering with the selected strategy:
Filter (capabilities + health) → Strategy → Decision
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional
import logging
import time

from core.errors import InvalidRequest, NoEligibleAgent
from observability import metrics as obs
from observability.tracing import create_span

from .capabilities import CapabilitySet
from .filters import EligibilityFilter
from .manifests import AgentManifest
from .metrics import RoutingMetricsCollector
from .strategies import (
    RANKED_STRATEGIES,
    RoundRobinSelector,
    RoutingStrategy,
    StickySessionSelector,
)

logger = logging.getLogger(__name__)


@dataclass
class RoutingDecision:
    """Outcome of a single select() call"""

    agent_id: str
    strategy: RoutingStrategy
    capabilities: CapabilitySet
    candidates: List[str] = field(default_factory=list)
    session_reused: bool = False

    def to_dict(self) -> Dict:
        return {
            "agent_id": self.agent_id,
            "strategy": self.strategy.value,
            "capabilities": self.capabilities.to_list(),
            "candidates": self.candidates,
            "session_reused": self.session_reused,
        }


class RoutingStrategyEngine:
    """
    Selects one agent for a capability requirement.

    Stages:
    1. Filter: capability superset + circuit state + exclusions
    2. Strategy: rank or rotate the survivors
    3. Record: metrics and routing history
    """

    def __init__(
        self,
        eligibility_filter: Optional[EligibilityFilter] = None,
        metrics_collector: Optional[RoutingMetricsCollector] = None,
        default_strategy: str = RoutingStrategy.CAPABILITY_MATCH.value,
    ):
        self.filter = eligibility_filter or EligibilityFilter()
        self.metrics = metrics_collector or RoutingMetricsCollector()
        self.default_strategy = RoutingStrategy.parse(default_strategy)
        self.round_robin = RoundRobinSelector()
        self.sticky = StickySessionSelector()

    def parse_strategy(self, strategy) -> RoutingStrategy:
        if strategy is None or strategy == "":
            return self.default_strategy
        try:
            return RoutingStrategy.parse(strategy)
        except ValueError as e:
            raise InvalidRequest(str(e), field="strategy")

    def select(
        self,
        capabilities,
        strategy,
        candidate_agents: List[AgentManifest],
        session_id: Optional[str] = None,
        exclude: Optional[Iterable[str]] = None,
    ) -> RoutingDecision:
        """
        Select an agent.

        Args:
            capabilities: Required capability set (non-empty)
            strategy: Strategy name or RoutingStrategy (None = default)
            candidate_agents: Agents known to the directory
            session_id: Session key for sticky_session
            exclude: Agent ids that must not be chosen (e.g. already failed)

        Returns:
            RoutingDecision for the chosen agent

        Raises:
            InvalidRequest: Empty capability set or unknown strategy
            NoEligibleAgent: Nothing survives the filter
        """
        required = CapabilitySet.coerce(capabilities)
        if not required:
            raise InvalidRequest("capabilities must not be empty", field="capabilities")

        chosen_strategy = self.parse_strategy(strategy)
        record = self.metrics.start_routing(required, chosen_strategy.value)
        start = time.time()

        with create_span(
            "route_task",
            {"strategy": chosen_strategy.value, "capabilities": ",".join(required)},
        ):
            eligible = self.filter.filter(required, candidate_agents, exclude=exclude)

            if not eligible:
                logger.warning(
                    f"No eligible agents for {required.to_list()} "
                    f"({len(candidate_agents)} candidates, strategy={chosen_strategy.value})"
                )
                obs.routing_decisions_total.labels(
                    strategy=chosen_strategy.value, result="no_eligible_agent"
                ).inc()
                self.metrics.complete_routing(record, None, success=False)
                raise NoEligibleAgent(required, chosen_strategy.value)

            session_reused = False
            if chosen_strategy == RoutingStrategy.ROUND_ROBIN:
                selected = self.round_robin.select(required, eligible)
            elif chosen_strategy == RoutingStrategy.STICKY_SESSION:
                selected, session_reused = self.sticky.select(session_id, eligible)
            else:
                selected = RANKED_STRATEGIES[chosen_strategy](eligible)

        obs.routing_latency.observe(time.time() - start)
        obs.routing_decisions_total.labels(strategy=chosen_strategy.value, result="selected").inc()
        self.metrics.complete_routing(record, selected.agent_id, success=True)

        return RoutingDecision(
            agent_id=selected.agent_id,
            strategy=chosen_strategy,
            capabilities=required,
            candidates=[m.agent_id for m in eligible],
            session_reused=session_reused,
        )

    def get_stats(self) -> Dict:
        """Get router statistics"""
        return {"routing_metrics": self.metrics.get_stats()}
