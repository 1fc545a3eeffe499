"""
Experiment Engine

Owns the experiment lifecycle, deterministic variant assignment, running
metric aggregates and significance testing.

Assignment is a pure function of (experiment_id, task_id): the same task
always lands on the same variant, so retries never contaminate the sample
and no per-task state is needed beyond an audit record.
"""

from collections import OrderedDict
from contextlib import ExitStack
from typing import Any, Dict, Iterable, List, Optional, Tuple
import hashlib
import logging
import threading
import time
import uuid

from core.errors import ExperimentNotActive, InvalidRequest, NotFound
from observability import metrics as obs

from .models import (
    VARIANT_A,
    VARIANT_B,
    VARIANTS,
    Assignment,
    Experiment,
    ExperimentStatus,
    MetricSpec,
)
from .stats import cohens_d, welch_t_test

logger = logging.getLogger(__name__)

DEFAULT_METRIC = "aggregate_score"

_BUCKET_SCALE = float(1 << 64)


def assignment_bucket(experiment_id: str, task_id: str) -> float:
    """Map (experiment_id, task_id) uniformly into [0, 1)"""
    digest = hashlib.sha256(f"{experiment_id}:{task_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") / _BUCKET_SCALE


def _coerce_metrics(metrics) -> List[MetricSpec]:
    if metrics is None:
        return [MetricSpec(DEFAULT_METRIC)]
    if not isinstance(metrics, (list, tuple)) or not metrics:
        raise InvalidRequest("metrics must be a non-empty list", field="metrics")

    specs = []
    for item in metrics:
        if isinstance(item, MetricSpec):
            spec = item
        elif isinstance(item, str):
            spec = MetricSpec(item)
        elif isinstance(item, dict) and isinstance(item.get("name"), str):
            spec = MetricSpec.from_dict(item)
        else:
            raise InvalidRequest(f"Invalid metric definition: {item!r}", field="metrics")

        if not spec.name:
            raise InvalidRequest("Metric names cannot be empty", field="metrics")
        if spec.weight <= 0:
            raise InvalidRequest(f"Metric {spec.name} weight must be positive", field="metrics")
        specs.append(spec)

    names = [s.name for s in specs]
    if len(set(names)) != len(names):
        raise InvalidRequest("Metric names must be unique", field="metrics")
    return specs


class ExperimentEngine:
    """
    A/B experiment manager.

    Aggregates are guarded by one lock per (experiment, metric) so updates to
    unrelated experiments or metrics never serialize. Status transitions and
    the experiment map share one registry lock.
    """

    def __init__(self, store=None, auto_complete: bool = False, audit_size: int = 10000):
        """
        Initialize experiment engine.

        Args:
            store: Optional persistence with save_experiment/load_experiments/
                save_assignment (e.g. storage.SQLiteStore)
            auto_complete: If True, results() that finds a winner moves an
                active experiment to completed
            audit_size: Recent assignments kept in memory; the store holds
                the full audit
        """
        self.store = store
        self.auto_complete = auto_complete

        self._experiments: Dict[str, Experiment] = {}
        self.audit_size = audit_size
        self._recent: Dict[Tuple[str, str], Assignment] = OrderedDict()
        self._lock = threading.Lock()
        self._metric_locks: Dict[Tuple[str, str], threading.Lock] = {}

        if store is not None:
            for data in store.load_experiments():
                experiment = Experiment.from_dict(data)
                self._experiments[experiment.experiment_id] = experiment
            if self._experiments:
                logger.info(f"Loaded {len(self._experiments)} experiments from store")

        obs.active_experiments.set(
            sum(1 for e in self._experiments.values() if e.is_active)
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_experiment(
        self,
        name: str,
        variant_a: str,
        variant_b: str,
        traffic_split: float = 0.5,
        min_samples: int = 100,
        confidence_level: float = 0.95,
        metrics: Optional[Iterable] = None,
        experiment_id: Optional[str] = None,
    ) -> Experiment:
        """
        Create an active experiment.

        Args:
            name: Human-readable name
            variant_a: Agent id of variant A
            variant_b: Agent id of variant B
            traffic_split: Probability a task goes to variant B, in (0, 1)
            min_samples: Samples each variant needs before a winner is named
            confidence_level: Target confidence, in (0, 1)
            metrics: Metric names, dicts or MetricSpec objects; defaults to
                the evaluation aggregate score
            experiment_id: Explicit id (generated if omitted)

        Raises:
            InvalidRequest: Any invalid field
        """
        if not isinstance(name, str) or not name.strip():
            raise InvalidRequest("name is required", field="name")
        for field_name, agent in (("variant_a", variant_a), ("variant_b", variant_b)):
            if not isinstance(agent, str) or not agent:
                raise InvalidRequest(f"{field_name} must be an agent id", field=field_name)
        if variant_a == variant_b:
            raise InvalidRequest("Variants must be different agents", field="variant_b")
        if isinstance(traffic_split, bool) or not isinstance(traffic_split, (int, float)) \
                or not 0.0 < traffic_split < 1.0:
            raise InvalidRequest("traffic_split must be in (0, 1)", field="traffic_split")
        if isinstance(min_samples, bool) or not isinstance(min_samples, int) or min_samples < 2:
            raise InvalidRequest("min_samples must be an integer >= 2", field="min_samples")
        if isinstance(confidence_level, bool) or not isinstance(confidence_level, (int, float)) \
                or not 0.0 < confidence_level < 1.0:
            raise InvalidRequest("confidence_level must be in (0, 1)", field="confidence_level")

        experiment = Experiment(
            experiment_id=experiment_id or f"exp-{uuid.uuid4().hex[:12]}",
            name=name.strip(),
            variant_a=variant_a,
            variant_b=variant_b,
            traffic_split=float(traffic_split),
            min_samples=min_samples,
            confidence_level=float(confidence_level),
            metrics=_coerce_metrics(metrics),
        )

        with self._lock:
            if experiment.experiment_id in self._experiments:
                raise InvalidRequest(
                    f"Experiment {experiment.experiment_id} already exists", field="experiment_id"
                )
            self._experiments[experiment.experiment_id] = experiment

        self._persist(experiment)
        obs.active_experiments.inc()

        logger.info(
            f"Created experiment {experiment.experiment_id} ({experiment.name}): "
            f"{variant_a} vs {variant_b}, split={experiment.traffic_split}"
        )
        return experiment

    def get_experiment(self, experiment_id: str) -> Experiment:
        experiment = self._experiments.get(experiment_id)
        if experiment is None:
            raise NotFound("experiment", experiment_id)
        return experiment

    def list_experiments(self, status: Optional[str] = None) -> List[Experiment]:
        """List experiments, oldest first, optionally filtered by status value"""
        if status is not None:
            try:
                wanted = ExperimentStatus(status)
            except ValueError:
                raise InvalidRequest(f"Unknown experiment status: {status}", field="status")
        with self._lock:
            experiments = list(self._experiments.values())
        if status is not None:
            experiments = [e for e in experiments if e.status == wanted]
        return sorted(experiments, key=lambda e: (e.created_at, e.experiment_id))

    def stop(self, experiment_id: str) -> Dict[str, Any]:
        """
        Stop an experiment, freezing its status and counts.

        Stopping a non-active experiment changes nothing and returns its
        final results.
        """
        experiment = self.get_experiment(experiment_id)
        changed = self._finish(experiment, ExperimentStatus.STOPPED)

        if changed:
            obs.active_experiments.dec()
            self._persist(experiment)
            logger.info(f"Stopped experiment {experiment_id}")

        return self._compute_results(experiment)

    def archive(self, experiment_id: str) -> Experiment:
        """
        Archive a completed or stopped experiment.

        Raises:
            InvalidRequest: Experiment still active
        """
        experiment = self.get_experiment(experiment_id)

        with self._lock:
            if experiment.is_active:
                raise InvalidRequest(f"Stop experiment {experiment_id} before archiving")
            experiment.status = ExperimentStatus.ARCHIVED

        self._persist(experiment)
        logger.info(f"Archived experiment {experiment_id}")
        return experiment

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    @staticmethod
    def variant_for(experiment: Experiment, task_id: str) -> Tuple[str, float]:
        bucket = assignment_bucket(experiment.experiment_id, task_id)
        variant = VARIANT_B if bucket < experiment.traffic_split else VARIANT_A
        return variant, bucket

    def assign(self, experiment_id: str, task_id: str) -> Assignment:
        """
        Assign a task to a variant.

        Raises:
            InvalidRequest: Missing task id
            NotFound: Unknown experiment
            ExperimentNotActive: Experiment no longer accepts assignments
        """
        if not isinstance(task_id, str) or not task_id:
            raise InvalidRequest("task_id is required", field="task_id")

        experiment = self.get_experiment(experiment_id)
        if not experiment.is_active:
            raise ExperimentNotActive(experiment_id, experiment.status.value)

        variant, bucket = self.variant_for(experiment, task_id)
        key = (experiment_id, task_id)

        with self._lock:
            assignment = self._recent.get(key)
            is_new = False
            if assignment is None:
                assignment = Assignment(
                    experiment_id=experiment_id,
                    task_id=task_id,
                    variant=variant,
                    agent_id=experiment.agent_for(variant),
                    bucket=bucket,
                )
                if self.store is not None:
                    is_new = self.store.save_assignment(assignment.to_dict())
                else:
                    is_new = True
                self._remember(key, assignment)

        if is_new:
            obs.experiment_assignments_total.labels(
                experiment_id=experiment_id, variant=variant
            ).inc()
            logger.debug(f"Assigned task {task_id} to {variant} of {experiment_id}")

        return assignment

    def _remember(self, key: Tuple[str, str], assignment: Assignment) -> None:
        self._recent[key] = assignment
        while len(self._recent) > self.audit_size:
            self._recent.popitem(last=False)

    def get_assignments(self, experiment_id: str) -> List[Assignment]:
        """Recent assignments of an experiment still held in memory"""
        self.get_experiment(experiment_id)
        with self._lock:
            return [a for (eid, _), a in self._recent.items() if eid == experiment_id]

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _metric_lock(self, experiment_id: str, metric: str) -> threading.Lock:
        key = (experiment_id, metric)
        lock = self._metric_locks.get(key)
        if lock is None:
            with self._lock:
                lock = self._metric_locks.setdefault(key, threading.Lock())
        return lock

    def _apply(self, experiment: Experiment, variant: str, values: Dict[str, float]) -> int:
        updated = 0
        for metric in experiment.metrics:
            value = values.get(metric.name)
            if value is None:
                continue
            with self._metric_lock(experiment.experiment_id, metric.name):
                if not experiment.is_active:
                    break
                experiment.aggregates[variant][metric.name].add(float(value))
            updated += 1

        if updated:
            self._persist(experiment)
        return updated

    def record_sample(self, experiment_id: str, variant: str, values: Dict[str, float]) -> int:
        """
        Fold one observation per metric into a variant's aggregates.

        Returns:
            Number of metrics updated (0 once the experiment is not active)

        Raises:
            InvalidRequest: Unknown variant or metric, or non-numeric value
        """
        experiment = self.get_experiment(experiment_id)
        if variant not in VARIANTS:
            raise InvalidRequest(f"variant must be one of {list(VARIANTS)}", field="variant")

        known = {m.name for m in experiment.metrics}
        for name, value in values.items():
            if name not in known:
                raise InvalidRequest(f"Experiment {experiment_id} does not track {name}", field="values")
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidRequest(f"Value for {name} must be a number", field="values")

        if not experiment.is_active:
            logger.debug(f"Ignoring sample for non-active experiment {experiment_id}")
            return 0
        return self._apply(experiment, variant, values)

    def record_evaluation(self, experiment_id: str, task_id: str, record) -> int:
        """
        Fold an evaluation record into the aggregates of the task's variant.

        The variant comes from the same hash as assign(), so evaluations land
        on the task's side whether or not its assignment is still cached.

        Returns:
            Number of metrics updated
        """
        experiment = self.get_experiment(experiment_id)
        if not experiment.is_active:
            logger.debug(f"Ignoring evaluation for non-active experiment {experiment_id}")
            return 0

        variant, _ = self.variant_for(experiment, task_id)

        agent_id = getattr(record, "agent_id", None)
        if agent_id and agent_id != experiment.agent_for(variant):
            logger.warning(
                f"Evaluation of task {task_id} names agent {agent_id}, "
                f"but {experiment_id} assigned it to {experiment.agent_for(variant)}"
            )

        values = dict(record.scores)
        values[DEFAULT_METRIC] = record.aggregate_score
        return self._apply(experiment, variant, values)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def results(self, experiment_id: str) -> Dict[str, Any]:
        """
        Current statistics and, when earned, the winner.

        A winner is named only when the primary metric's difference is
        significant at the experiment's confidence level and both variants
        reached min_samples.
        """
        experiment = self.get_experiment(experiment_id)
        result = self._compute_results(experiment)

        if self.auto_complete and result["winner"] is not None:
            if self._finish(experiment, ExperimentStatus.COMPLETED):
                obs.active_experiments.dec()
                self._persist(experiment)
                logger.info(f"Experiment {experiment_id} completed: winner {result['winner']}")
                result["status"] = experiment.status.value

        return result

    def _compute_results(self, experiment: Experiment) -> Dict[str, Any]:
        alpha = 1.0 - experiment.confidence_level
        per_metric: Dict[str, Dict[str, Any]] = {}
        snapshots: Dict[str, Dict[str, Dict[str, Any]]] = {VARIANT_A: {}, VARIANT_B: {}}

        for metric in experiment.metrics:
            with self._metric_lock(experiment.experiment_id, metric.name):
                a = experiment.aggregates[VARIANT_A][metric.name].summary()
                b = experiment.aggregates[VARIANT_B][metric.name].summary()
            snapshots[VARIANT_A][metric.name] = a
            snapshots[VARIANT_B][metric.name] = b

            welch = welch_t_test(
                a["mean"], a["variance"], a["count"], b["mean"], b["variance"], b["count"]
            )
            per_metric[metric.name] = {
                "mean_a": a["mean"],
                "mean_b": b["mean"],
                "t_statistic": welch.t_statistic,
                "degrees_of_freedom": welch.degrees_of_freedom,
                "p_value": welch.p_value,
                "effect_size": cohens_d(
                    a["mean"], a["variance"], a["count"], b["mean"], b["variance"], b["count"]
                ),
                "statistical_significance": welch.p_value < alpha,
                "higher_is_better": metric.higher_is_better,
            }

        primary = experiment.primary_metric
        headline = per_metric[primary.name]
        enough = all(
            snapshots[v][primary.name]["count"] >= experiment.min_samples for v in VARIANTS
        )

        winner = None
        if headline["statistical_significance"] and enough:
            b_ahead = headline["mean_b"] > headline["mean_a"]
            winner = VARIANT_B if b_ahead == primary.higher_is_better else VARIANT_A

        def variant_view(variant: str) -> Dict[str, Any]:
            return {
                "agent_id": experiment.agent_for(variant),
                "samples": snapshots[variant][primary.name]["count"],
                "metrics": snapshots[variant],
            }

        return {
            "experiment_id": experiment.experiment_id,
            "name": experiment.name,
            "status": experiment.status.value,
            "winner": winner,
            "winner_agent_id": experiment.agent_for(winner) if winner else None,
            "primary_metric": primary.name,
            "statistical_significance": headline["statistical_significance"],
            "min_samples_reached": enough,
            "confidence": 1.0 - headline["p_value"],
            "confidence_level": experiment.confidence_level,
            "p_value": headline["p_value"],
            "effect_size": headline["effect_size"],
            "t_statistic": headline["t_statistic"],
            "degrees_of_freedom": headline["degrees_of_freedom"],
            "variant_a": variant_view(VARIANT_A),
            "variant_b": variant_view(VARIANT_B),
            "metrics": per_metric,
        }

    def _finish(self, experiment: Experiment, status: ExperimentStatus) -> bool:
        """
        Move an active experiment to a final status.

        Holds every metric lock while the status changes, so no update that
        passed its active check can land afterwards.

        Returns:
            True if this call changed the status
        """
        locks = [self._metric_lock(experiment.experiment_id, m.name) for m in experiment.metrics]
        with ExitStack() as stack:
            for lock in locks:
                stack.enter_context(lock)
            with self._lock:
                if not experiment.is_active:
                    return False
                experiment.status = status
                experiment.stopped_at = time.time()
        return True

    def _persist(self, experiment: Experiment) -> None:
        if self.store is not None:
            self.store.save_experiment(experiment.to_dict())
