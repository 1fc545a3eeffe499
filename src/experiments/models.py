"""
Experiment Data Model

Experiments compare two agents (variants A and B) on a list of metrics.
Per-variant aggregates are kept as running count/mean/variance so results
never need to re-scan samples.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import math
import time

VARIANT_A = "variant_a"
VARIANT_B = "variant_b"
VARIANTS = (VARIANT_A, VARIANT_B)


class ExperimentStatus(Enum):
    """Experiment lifecycle"""

    ACTIVE = "active"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class MetricSpec:
    """Tracked metric with its weight in picking the primary metric"""

    name: str
    weight: float = 1.0
    higher_is_better: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "weight": self.weight, "higher_is_better": self.higher_is_better}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricSpec":
        return cls(
            name=data["name"],
            weight=float(data.get("weight", 1.0)),
            higher_is_better=bool(data.get("higher_is_better", True)),
        )


class RunningStats:
    """
    Welford's online mean/variance.

    Numerically stable; one update per sample, no sample history.
    """

    __slots__ = ("count", "mean", "m2")

    def __init__(self, count: int = 0, mean: float = 0.0, m2: float = 0.0):
        self.count = count
        self.mean = mean
        self.m2 = m2

    def add(self, value: float) -> None:
        self.count += 1
        delta = value - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (value - self.mean)

    @property
    def variance(self) -> float:
        """Sample variance (n - 1 denominator); 0.0 below two samples"""
        if self.count < 2:
            return 0.0
        return self.m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "mean": self.mean, "m2": self.m2}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunningStats":
        return cls(int(data["count"]), float(data["mean"]), float(data["m2"]))

    def summary(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "mean": self.mean,
            "variance": self.variance,
            "std": self.std,
        }

    def __repr__(self) -> str:
        return f"RunningStats(count={self.count}, mean={self.mean:.4f}, variance={self.variance:.6f})"


@dataclass
class Experiment:
    """
    A/B experiment between two agents.

    traffic_split is the probability a task is routed to variant B.
    """

    experiment_id: str
    name: str
    variant_a: str
    variant_b: str
    traffic_split: float = 0.5
    min_samples: int = 100
    confidence_level: float = 0.95
    metrics: List[MetricSpec] = field(default_factory=list)
    status: ExperimentStatus = ExperimentStatus.ACTIVE
    aggregates: Dict[str, Dict[str, RunningStats]] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    stopped_at: Optional[float] = None

    def __post_init__(self):
        for variant in VARIANTS:
            per_metric = self.aggregates.setdefault(variant, {})
            for metric in self.metrics:
                per_metric.setdefault(metric.name, RunningStats())

    @property
    def is_active(self) -> bool:
        return self.status == ExperimentStatus.ACTIVE

    @property
    def primary_metric(self) -> MetricSpec:
        """Highest weight wins; first listed on ties"""
        best = self.metrics[0]
        for metric in self.metrics[1:]:
            if metric.weight > best.weight:
                best = metric
        return best

    def agent_for(self, variant: str) -> str:
        return self.variant_b if variant == VARIANT_B else self.variant_a

    def sample_count(self, variant: str) -> int:
        """Samples of the primary metric recorded for a variant"""
        return self.aggregates[variant][self.primary_metric.name].count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "name": self.name,
            "variant_a": self.variant_a,
            "variant_b": self.variant_b,
            "traffic_split": self.traffic_split,
            "min_samples": self.min_samples,
            "confidence_level": self.confidence_level,
            "metrics": [m.to_dict() for m in self.metrics],
            "status": self.status.value,
            "aggregates": {
                variant: {name: stats.to_dict() for name, stats in per_metric.items()}
                for variant, per_metric in self.aggregates.items()
            },
            "created_at": self.created_at,
            "stopped_at": self.stopped_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experiment":
        return cls(
            experiment_id=data["experiment_id"],
            name=data["name"],
            variant_a=data["variant_a"],
            variant_b=data["variant_b"],
            traffic_split=float(data["traffic_split"]),
            min_samples=int(data["min_samples"]),
            confidence_level=float(data["confidence_level"]),
            metrics=[MetricSpec.from_dict(m) for m in data["metrics"]],
            status=ExperimentStatus(data["status"]),
            aggregates={
                variant: {name: RunningStats.from_dict(s) for name, s in per_metric.items()}
                for variant, per_metric in data.get("aggregates", {}).items()
            },
            created_at=data.get("created_at", time.time()),
            stopped_at=data.get("stopped_at"),
        )


@dataclass(frozen=True)
class Assignment:
    """Audit record of a variant assignment"""

    experiment_id: str
    task_id: str
    variant: str
    agent_id: str
    bucket: float
    assigned_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "task_id": self.task_id,
            "variant": self.variant,
            "agent_id": self.agent_id,
            "bucket": self.bucket,
            "assigned_at": self.assigned_at,
        }
