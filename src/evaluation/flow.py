"""
Flow Adherence Checker

Compares the expected step sequence of a workflow with the observed one
using a longest-common-subsequence alignment, so an inserted or dropped step
does not shift every later position into a mismatch.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from core.errors import InvalidRequest


@dataclass(frozen=True)
class FlowTrace:
    """Adherence of one task's observed steps to its expected flow"""

    task_id: Optional[str]
    expected_flow: List[str]
    actual_flow: List[str]
    adherence_score: float
    missed_steps: List[str] = field(default_factory=list)
    extra_steps: List[str] = field(default_factory=list)
    deviations: int = 0
    sequence_correct: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "expected_flow": list(self.expected_flow),
            "actual_flow": list(self.actual_flow),
            "adherence_score": self.adherence_score,
            "missed_steps": list(self.missed_steps),
            "extra_steps": list(self.extra_steps),
            "deviations": self.deviations,
            "sequence_correct": self.sequence_correct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FlowTrace":
        return cls(**data)


def lcs_length(a: Sequence[str], b: Sequence[str]) -> int:
    """Length of the longest common subsequence (O(len(a) * len(b)))"""
    if not a or not b:
        return 0
    previous = [0] * (len(b) + 1)
    for x in a:
        current = [0]
        for j, y in enumerate(b, start=1):
            if x == y:
                current.append(previous[j - 1] + 1)
            else:
                current.append(max(previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def _difference(a: Sequence[str], b: Sequence[str]) -> List[str]:
    """Steps of a not present in b, first-seen order, no duplicates"""
    other = set(b)
    seen = set()
    result = []
    for step in a:
        if step not in other and step not in seen:
            seen.add(step)
            result.append(step)
    return result


def _validate(name: str, flow) -> List[str]:
    if not isinstance(flow, (list, tuple)):
        raise InvalidRequest(f"{name} must be a list of step names", field=name)
    if not all(isinstance(step, str) for step in flow):
        raise InvalidRequest(f"{name} must contain only strings", field=name)
    return list(flow)


def check_flow(expected_flow, actual_flow, task_id: Optional[str] = None) -> FlowTrace:
    """
    Compare an expected step sequence to an observed one.

    Args:
        expected_flow: Ordered expected step names
        actual_flow: Ordered observed step names
        task_id: Task the trace belongs to

    Returns:
        FlowTrace. An empty expected flow has nothing to miss and scores 1.0.
    """
    expected = _validate("expected_flow", expected_flow)
    actual = _validate("actual_flow", actual_flow)

    common = lcs_length(expected, actual)

    if expected:
        score = max(0.0, min(1.0, common / len(expected)))
    else:
        score = 1.0

    return FlowTrace(
        task_id=task_id,
        expected_flow=expected,
        actual_flow=actual,
        adherence_score=score,
        missed_steps=_difference(expected, actual),
        extra_steps=_difference(actual, expected),
        deviations=len(expected) + len(actual) - 2 * common,
        sequence_correct=expected == actual,
    )
