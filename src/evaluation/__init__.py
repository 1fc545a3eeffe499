"""
Evaluation Module

Template-based response scoring and workflow flow-adherence checks.
"""

from .scorers import (
    MetricScorer,
    ScoringContext,
    AccuracyScorer,
    RelevanceScorer,
    CoherenceScorer,
    HallucinationScorer,
)
from .templates import EvaluationTemplate, BUILTIN_TEMPLATES
from .registry import MetricRegistry
from .engine import EvaluationEngine, EvaluationRecord, EvaluationRequest, BatchEvaluationResult
from .flow import FlowTrace, check_flow, lcs_length

__all__ = [
    "MetricScorer",
    "ScoringContext",
    "AccuracyScorer",
    "RelevanceScorer",
    "CoherenceScorer",
    "HallucinationScorer",
    "EvaluationTemplate",
    "BUILTIN_TEMPLATES",
    "MetricRegistry",
    "EvaluationEngine",
    "EvaluationRecord",
    "EvaluationRequest",
    "BatchEvaluationResult",
    "FlowTrace",
    "check_flow",
    "lcs_length",
]
