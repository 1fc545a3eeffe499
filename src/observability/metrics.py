"""Prometheus metrics for routing, dispatch, evaluation and experiments.

Exposes counters, histograms and gauges in the Prometheus exposition format
so the router can be scraped alongside the agents it fronts.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    REGISTRY,
)
import time
from functools import wraps


# ============================================================================
# CORE METRICS
# ============================================================================

# Task lifecycle
tasks_submitted_total = Counter(
    "agent_router_tasks_submitted_total",
    "Total number of tasks submitted",
    ["strategy"],
)

tasks_finished_total = Counter(
    "agent_router_tasks_finished_total",
    "Total number of tasks reaching a terminal state",
    ["state"],
)

active_tasks = Gauge("agent_router_active_tasks", "Number of tasks currently in flight")

dispatch_attempts_total = Counter(
    "agent_router_dispatch_attempts_total",
    "Dispatch attempts by outcome",
    ["outcome"],  # success, failure, timeout, cancelled
)

dispatch_latency = Histogram(
    "agent_router_dispatch_latency_seconds",
    "Latency of a single agent dispatch attempt",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Routing
routing_decisions_total = Counter(
    "agent_router_routing_decisions_total",
    "Routing decisions by strategy and result",
    ["strategy", "result"],  # result: selected, no_eligible_agent
)

routing_latency = Histogram(
    "agent_router_routing_latency_seconds",
    "Time to select an agent",
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1],
)

# Agent health
agent_failures_total = Counter(
    "agent_router_agent_failures_total",
    "Dispatch failures recorded against an agent",
    ["agent_id"],
)

circuit_transitions_total = Counter(
    "agent_router_circuit_transitions_total",
    "Circuit breaker state transitions",
    ["agent_id", "to_state"],
)

# Evaluation
evaluations_total = Counter(
    "agent_router_evaluations_total",
    "Evaluations by template and verdict",
    ["template", "passed"],
)

evaluation_score = Histogram(
    "agent_router_evaluation_score",
    "Aggregate evaluation scores",
    ["template"],
    buckets=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
)

# Experiments
experiment_assignments_total = Counter(
    "agent_router_experiment_assignments_total",
    "Variant assignments",
    ["experiment_id", "variant"],
)

active_experiments = Gauge("agent_router_active_experiments", "Experiments accepting traffic")

# System health
system_uptime_seconds = Gauge("agent_router_uptime_seconds", "Router uptime in seconds")

system_info = Info("agent_router_system", "Router information")


# ============================================================================
# HELPER FUNCTIONS & DECORATORS
# ============================================================================


def track_time(histogram):
    """
    Decorator to automatically track execution time.

    Args:
        histogram: Prometheus Histogram to record time

    Example:
        @track_time(routing_latency)
        def select(...):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                histogram.observe(time.time() - start_time)

        return wrapper

    return decorator


class MetricsContext:
    """
    Context manager for timing a block into a histogram.

    Example:
        with MetricsContext(dispatch_latency):
            await invoke()
    """

    def __init__(self, histogram):
        self.histogram = histogram
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.histogram.observe(time.time() - self.start_time)
        return False

    @property
    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000.0


# ============================================================================
# METRICS COLLECTOR
# ============================================================================


class MetricsCollector:
    """Exports the metrics registry for scraping."""

    def __init__(self):
        self.start_time = time.time()
        self._update_system_info()

    def _update_system_info(self):
        import platform

        system_info.info(
            {
                "version": "1.0.0",
                "platform": platform.system(),
                "python_version": platform.python_version(),
            }
        )

    def update_uptime(self):
        system_uptime_seconds.set(time.time() - self.start_time)

    def get_metrics(self) -> bytes:
        """
        Get metrics in Prometheus format.

        Returns:
            Metrics as bytes in Prometheus exposition format
        """
        self.update_uptime()
        return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
