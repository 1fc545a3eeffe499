"""
Routing Module

Capability inference, eligibility filtering and multi-strategy selection of
the agent that should receive a task.
"""

from .capabilities import CapabilitySet, CapabilityClassifier, infer_capabilities
from .manifests import AgentManifest, AgentDirectory, ManifestRegistry, AgentCache
from .filters import EligibilityFilter
from .strategies import RoutingStrategy, RoundRobinSelector, StickySessionSelector
from .metrics import RoutingMetricsCollector, RoutingRecord
from .router import RoutingStrategyEngine, RoutingDecision

__all__ = [
    "CapabilitySet",
    "CapabilityClassifier",
    "infer_capabilities",
    "AgentManifest",
    "AgentDirectory",
    "ManifestRegistry",
    "AgentCache",
    "EligibilityFilter",
    "RoutingStrategy",
    "RoundRobinSelector",
    "StickySessionSelector",
    "RoutingMetricsCollector",
    "RoutingRecord",
    "RoutingStrategyEngine",
    "RoutingDecision",
]
