"""
Agent Manifest System

Agent metadata referenced by the router. The Agent Directory is the
authoritative source; the router keeps a read-mostly cache keyed by agent id
and folds dispatch outcomes into rolling performance statistics.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Protocol, Set
import logging
import threading
import time

from .capabilities import CapabilitySet

logger = logging.getLogger(__name__)


@dataclass
class AgentManifest:
    """
    Agent description used for routing.

    Combines the directory listing (id, capabilities, status) with the
    agent's rolling performance statistics.
    """

    # Identity
    agent_id: str

    # Capabilities, e.g. ["code_generation", "data_analysis"]
    capabilities: CapabilitySet

    # Performance Metrics
    success_rate: float = 1.0  # 0.0 - 1.0
    avg_latency_ms: float = 0.0
    cost_per_call: float = 0.0

    # Availability as reported by the directory ("active", "inactive", ...)
    status: str = "active"

    tags: List[str] = field(default_factory=list)
    version: str = "1.0.0"

    # Where the agent is reached (used by HttpInvoker)
    endpoint: Optional[str] = None

    def __post_init__(self):
        self.capabilities = CapabilitySet.coerce(self.capabilities)

    def supports(self, required: CapabilitySet) -> bool:
        """Check if agent declares every required capability"""
        return self.capabilities.issuperset(required)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            "agent_id": self.agent_id,
            "capabilities": self.capabilities.to_list(),
            "success_rate": self.success_rate,
            "avg_latency_ms": self.avg_latency_ms,
            "cost_per_call": self.cost_per_call,
            "status": self.status,
            "tags": self.tags,
            "version": self.version,
            "endpoint": self.endpoint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentManifest":
        """Create from dictionary"""
        return cls(**data)


class AgentDirectory(Protocol):
    """Boundary to the external agent directory."""

    def list_agents(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Return [{id, capabilities, status}] matching the filter"""
        ...

    def get_agent_stats(self, agent_id: str) -> Dict[str, float]:
        """Return {success_rate, mean_latency, cost_per_call}"""
        ...


class ManifestRegistry:
    """
    In-memory agent directory.

    Maintains a capability index for fast lookups. Used when the host
    process owns agent registration itself, and in tests.
    """

    def __init__(self):
        self.manifests: Dict[str, AgentManifest] = {}
        self.capability_index: Dict[str, Set[str]] = {}  # capability -> agent_ids
        self._lock = threading.Lock()

    def register(self, manifest: AgentManifest) -> None:
        """
        Register (or replace) an agent manifest.

        Args:
            manifest: Agent manifest to register
        """
        with self._lock:
            if manifest.agent_id in self.manifests:
                self._unindex(self.manifests[manifest.agent_id])
            self.manifests[manifest.agent_id] = manifest
            for capability in manifest.capabilities:
                self.capability_index.setdefault(capability, set()).add(manifest.agent_id)

        logger.info(
            f"Registered agent {manifest.agent_id} with capabilities: "
            f"{manifest.capabilities.to_list()}"
        )

    def unregister(self, agent_id: str) -> None:
        with self._lock:
            manifest = self.manifests.pop(agent_id, None)
            if manifest is None:
                logger.warning(f"Attempted to unregister unknown agent: {agent_id}")
                return
            self._unindex(manifest)

        logger.info(f"Unregistered agent {agent_id}")

    def _unindex(self, manifest: AgentManifest) -> None:
        for capability in manifest.capabilities:
            agents = self.capability_index.get(capability)
            if agents is not None:
                agents.discard(manifest.agent_id)
                if not agents:
                    del self.capability_index[capability]

    def get(self, agent_id: str) -> Optional[AgentManifest]:
        return self.manifests.get(agent_id)

    def find_by_capability(self, capability: str) -> List[AgentManifest]:
        agent_ids = self.capability_index.get(capability, set())
        return [self.manifests[aid] for aid in sorted(agent_ids)]

    def get_all(self) -> List[AgentManifest]:
        return list(self.manifests.values())

    def count(self) -> int:
        return len(self.manifests)

    def list_agents(self, filter: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Directory listing.

        Args:
            filter: Optional {"capabilities": [...], "status": "..."}

        Returns:
            List of {id, capabilities, status}
        """
        filter = filter or {}
        manifests = self.get_all()

        required = filter.get("capabilities")
        if required:
            required_set = CapabilitySet.coerce(required)
            manifests = [m for m in manifests if m.supports(required_set)]

        status = filter.get("status")
        if status:
            manifests = [m for m in manifests if m.status == status]

        return [
            {"id": m.agent_id, "capabilities": m.capabilities.to_list(), "status": m.status}
            for m in sorted(manifests, key=lambda m: m.agent_id)
        ]

    def get_agent_stats(self, agent_id: str) -> Dict[str, float]:
        manifest = self.manifests.get(agent_id)
        if manifest is None:
            raise KeyError(agent_id)
        return {
            "success_rate": manifest.success_rate,
            "mean_latency": manifest.avg_latency_ms,
            "cost_per_call": manifest.cost_per_call,
        }

    def get_stats(self) -> Dict[str, Any]:
        """Get registry statistics"""
        return {
            "total_agents": len(self.manifests),
            "capabilities": len(self.capability_index),
        }


class AgentCache:
    """
    Read-mostly cache of agent manifests keyed by agent id.

    Refreshes from the directory when the snapshot is older than the TTL.
    Dispatch outcomes are folded into success rate and latency with an
    exponential moving average until the next refresh replaces them.
    """

    def __init__(self, directory: AgentDirectory, ttl_seconds: float = 30.0, alpha: float = 0.3):
        """
        Initialize agent cache.

        Args:
            directory: Authoritative agent directory
            ttl_seconds: Maximum snapshot age before refresh
            alpha: EMA smoothing factor for outcome feedback
        """
        self.directory = directory
        self.ttl_seconds = ttl_seconds
        self.alpha = alpha
        self._agents: Dict[str, AgentManifest] = {}
        self._loaded_at: Optional[float] = None
        self._lock = threading.Lock()

    def refresh(self) -> None:
        """Reload every agent from the directory"""
        listing = self.directory.list_agents({})
        agents: Dict[str, AgentManifest] = {}

        for entry in listing:
            agent_id = entry["id"]
            try:
                stats = self.directory.get_agent_stats(agent_id)
            except KeyError:
                logger.warning(f"Directory listed {agent_id} but has no stats for it")
                stats = {}
            agents[agent_id] = AgentManifest(
                agent_id=agent_id,
                capabilities=CapabilitySet(entry.get("capabilities", [])),
                status=entry.get("status", "active"),
                success_rate=float(stats.get("success_rate", 1.0)),
                avg_latency_ms=float(stats.get("mean_latency", 0.0)),
                cost_per_call=float(stats.get("cost_per_call", 0.0)),
            )

        with self._lock:
            self._agents = agents
            self._loaded_at = time.monotonic()

        logger.debug(f"Agent cache refreshed with {len(agents)} agents")

    def _ensure_fresh(self) -> None:
        loaded_at = self._loaded_at
        if loaded_at is None or time.monotonic() - loaded_at >= self.ttl_seconds:
            self.refresh()

    def all(self) -> List[AgentManifest]:
        """All cached agents in a stable (id) order"""
        self._ensure_fresh()
        with self._lock:
            return [self._agents[aid] for aid in sorted(self._agents)]

    def active(self) -> List[AgentManifest]:
        return [m for m in self.all() if m.status == "active"]

    def get(self, agent_id: str) -> Optional[AgentManifest]:
        self._ensure_fresh()
        with self._lock:
            return self._agents.get(agent_id)

    def record_outcome(self, agent_id: str, success: bool, latency_ms: Optional[float] = None) -> None:
        """
        Fold a dispatch outcome into the cached rolling stats.

        Args:
            agent_id: Agent that handled the call
            success: Whether the call succeeded
            latency_ms: Observed latency for successful calls
        """
        with self._lock:
            manifest = self._agents.get(agent_id)
            if manifest is None:
                return

            success_rate = (1 - self.alpha) * manifest.success_rate + self.alpha * (
                1.0 if success else 0.0
            )
            avg_latency = manifest.avg_latency_ms
            if latency_ms is not None:
                avg_latency = (
                    latency_ms
                    if avg_latency <= 0
                    else (1 - self.alpha) * avg_latency + self.alpha * latency_ms
                )

            # Replace rather than mutate: readers hold references to snapshots.
            self._agents[agent_id] = replace(
                manifest, success_rate=success_rate, avg_latency_ms=avg_latency
            )

        logger.debug(
            f"Outcome for {agent_id}: success={success}, "
            f"success_rate={success_rate:.3f}, avg_latency_ms={avg_latency:.1f}"
        )

    def invalidate(self) -> None:
        with self._lock:
            self._loaded_at = None
