"""
Experiments Module

A/B experiments between agents: deterministic assignment, Welford
aggregates and Welch significance testing.
"""

from .models import (
    VARIANT_A,
    VARIANT_B,
    Assignment,
    Experiment,
    ExperimentStatus,
    MetricSpec,
    RunningStats,
)
from .stats import WelchResult, welch_t_test, cohens_d, regularized_incomplete_beta
from .engine import ExperimentEngine, assignment_bucket

__all__ = [
    "VARIANT_A",
    "VARIANT_B",
    "Assignment",
    "Experiment",
    "ExperimentStatus",
    "MetricSpec",
    "RunningStats",
    "WelchResult",
    "welch_t_test",
    "cohens_d",
    "regularized_incomplete_beta",
    "ExperimentEngine",
    "assignment_bucket",
]
