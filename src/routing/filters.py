"""
Eligibility Filtering

An agent is a routing candidate only if its declared capabilities are a
superset of the task's requirement and its circuit is not open.
"""

from typing import Iterable, List, Optional
import logging

from .capabilities import CapabilitySet
from .manifests import AgentManifest

logger = logging.getLogger(__name__)


class EligibilityFilter:
    """
    Filters agents down to the eligible set for one task.

    Checks, in order:
    - Explicit exclusions (agents already tried for this task)
    - Capability superset
    - Health (circuit not open; half-open only with the probe slot free)
    """

    def __init__(self, health_tracker=None):
        """
        Initialize eligibility filter.

        Args:
            health_tracker: AgentHealthTracker; without one every agent counts
                as healthy.
        """
        self.health_tracker = health_tracker

    def filter_by_capabilities(
        self, required: CapabilitySet, manifests: List[AgentManifest]
    ) -> List[AgentManifest]:
        compatible = [m for m in manifests if m.supports(required)]
        logger.debug(f"Capability filtering: {len(manifests)} → {len(compatible)} agents")
        return compatible

    def filter_by_health(self, manifests: List[AgentManifest]) -> List[AgentManifest]:
        if self.health_tracker is None:
            return manifests

        healthy = []
        for manifest in manifests:
            if self.health_tracker.is_selectable(manifest.agent_id):
                healthy.append(manifest)
            else:
                logger.debug(f"Agent {manifest.agent_id} excluded: circuit not selectable")

        logger.debug(f"Health filtering: {len(manifests)} → {len(healthy)} agents")
        return healthy

    def filter(
        self,
        required,
        manifests: List[AgentManifest],
        exclude: Optional[Iterable[str]] = None,
    ) -> List[AgentManifest]:
        """
        Apply all filters in sequence.

        Args:
            required: Required capability set
            manifests: Candidate agents
            exclude: Agent ids to drop regardless of fit

        Returns:
            Eligible agents, in input order
        """
        required = CapabilitySet.coerce(required)
        excluded = set(exclude or ())

        candidates = [m for m in manifests if m.agent_id not in excluded]
        candidates = self.filter_by_capabilities(required, candidates)
        candidates = self.filter_by_health(candidates)

        logger.debug(f"Eligibility filter complete: {len(candidates)} agents qualified")
        return candidates
