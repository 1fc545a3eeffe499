"""
Evaluation Templates

A template fixes the metric vector, the weight of each metric in the
aggregate score and the pass threshold.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class EvaluationTemplate:
    """Named metric weighting with a pass threshold"""

    name: str
    metrics: Dict[str, float]  # metric name -> weight
    threshold: float
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Template name is required")
        if not self.metrics:
            raise ValueError(f"Template {self.name} defines no metrics")
        if any(weight <= 0 for weight in self.metrics.values()):
            raise ValueError(f"Template {self.name} has non-positive metric weights")
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"Template {self.name} threshold must be in [0, 1]")

    @property
    def metric_names(self) -> List[str]:
        return list(self.metrics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "metrics": dict(self.metrics),
            "threshold": self.threshold,
            "description": self.description,
        }


BUILTIN_TEMPLATES: Dict[str, EvaluationTemplate] = {
    t.name: t
    for t in (
        EvaluationTemplate(
            name="accuracy",
            metrics={"accuracy": 1.0},
            threshold=0.7,
            description="Agreement with the expected output",
        ),
        EvaluationTemplate(
            name="relevance",
            metrics={"relevance": 1.0},
            threshold=0.6,
            description="Topical overlap with the prompt and declared context",
        ),
        EvaluationTemplate(
            name="coherence",
            metrics={"coherence": 1.0},
            threshold=0.6,
            description="Internal consistency and readability of the response",
        ),
        EvaluationTemplate(
            name="hallucination",
            metrics={"hallucination": 1.0},
            threshold=0.7,
            description="Fraction of claims supported by grounding documents",
        ),
        EvaluationTemplate(
            name="comprehensive",
            metrics={"accuracy": 0.35, "relevance": 0.25, "coherence": 0.2, "hallucination": 0.2},
            threshold=0.7,
            description="Weighted blend of every built-in metric that has inputs",
        ),
    )
}
