"""
Evaluation Engine

Scores a (prompt, response) pair against a named template and produces an
immutable EvaluationRecord. Batch evaluation reports per-item outcomes
instead of failing the whole batch on one bad item.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging
import math
import time
import uuid

from core.errors import EvaluationError, InvalidRequest, RouterError
from observability import metrics as obs
from observability.tracing import create_span

from .registry import MetricRegistry
from .scorers import ScoringContext

logger = logging.getLogger(__name__)

DEFAULT_BATCH_MAX = 50


@dataclass(frozen=True)
class EvaluationRecord:
    """
    Result of scoring one response.

    Immutable once created; records are append-only.
    """

    eval_id: str
    agent_id: Optional[str]
    task_id: Optional[str]
    template: str
    scores: Dict[str, float]
    metric_passed: Dict[str, bool]
    aggregate_score: float
    threshold: float
    passed: bool
    feedback: str
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eval_id": self.eval_id,
            "agent_id": self.agent_id,
            "task_id": self.task_id,
            "template": self.template,
            "scores": dict(self.scores),
            "metric_passed": dict(self.metric_passed),
            "aggregate_score": self.aggregate_score,
            "threshold": self.threshold,
            "passed": self.passed,
            "feedback": self.feedback,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationRecord":
        return cls(**data)


@dataclass
class EvaluationRequest:
    """One item of a batch evaluation"""

    prompt: str
    response: str
    template: str
    agent_id: Optional[str] = None
    task_id: Optional[str] = None
    expected_output: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvaluationRequest":
        if not isinstance(data, dict):
            raise InvalidRequest("Batch items must be objects")
        known = {
            "prompt", "response", "template", "agent_id", "task_id", "expected_output", "context",
        }
        missing = [key for key in ("prompt", "response", "template") if key not in data]
        if missing:
            raise InvalidRequest(f"Missing required field: {missing[0]}", field=missing[0])
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class BatchEvaluationResult:
    """Partial-success summary of a batch"""

    total: int
    successful: int
    failed: int
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "results": self.results,
        }


class EvaluationEngine:
    """
    Computes template metrics and the weighted aggregate.

    Metrics whose inputs are absent (no expected output, no grounding docs)
    are skipped and the remaining weights renormalized. If nothing can be
    computed the request is invalid.
    """

    def __init__(self, registry: Optional[MetricRegistry] = None, batch_max: int = DEFAULT_BATCH_MAX):
        """
        Initialize evaluation engine.

        Args:
            registry: Metric and template registry
            batch_max: Maximum items per evaluate_batch call
        """
        self.registry = registry or MetricRegistry()
        self.batch_max = batch_max

    def evaluate(
        self,
        prompt: str,
        response: str,
        template: str,
        expected_output: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> EvaluationRecord:
        """
        Evaluate one response.

        Args:
            prompt: Prompt the agent answered
            response: Agent response
            template: Template name
            expected_output: Reference answer (accuracy)
            context: Extra inputs, e.g. topic, keywords, grounding_docs
            agent_id: Agent that produced the response
            task_id: Task the response belongs to

        Returns:
            EvaluationRecord

        Raises:
            InvalidRequest: Missing prompt/response, unknown template, or no
                metric of the template could be computed
            EvaluationError: A scorer raised or returned an invalid value
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidRequest("prompt is required", field="prompt")
        if not isinstance(response, str):
            raise InvalidRequest("response must be a string", field="response")
        if context is not None and not isinstance(context, dict):
            raise InvalidRequest("context must be an object", field="context")

        tmpl = self.registry.get_template(template)
        if tmpl is None:
            raise InvalidRequest(f"Unknown evaluation template: {template}", field="template")

        ctx = ScoringContext(
            prompt=prompt,
            expected_output=expected_output,
            context=dict(context or {}),
        )

        with create_span("evaluate", {"template": tmpl.name, "agent_id": agent_id, "task_id": task_id}):
            scores: Dict[str, float] = {}
            metric_passed: Dict[str, bool] = {}

            for metric in tmpl.metric_names:
                value, passed = self._run_scorer(metric, response, ctx)
                if value is None:
                    logger.debug(f"Metric {metric} skipped: inputs not supplied")
                    continue
                scores[metric] = value
                metric_passed[metric] = passed

        if not scores:
            raise InvalidRequest(
                f"Template {tmpl.name} needs inputs that were not supplied "
                f"(metrics: {', '.join(tmpl.metric_names)})"
            )

        total_weight = sum(tmpl.metrics[m] for m in scores)
        aggregate = sum(tmpl.metrics[m] * v for m, v in scores.items()) / total_weight
        aggregate = round(aggregate, 6)
        passed = aggregate >= tmpl.threshold

        record = EvaluationRecord(
            eval_id=str(uuid.uuid4()),
            agent_id=agent_id,
            task_id=task_id,
            template=tmpl.name,
            scores=scores,
            metric_passed=metric_passed,
            aggregate_score=aggregate,
            threshold=tmpl.threshold,
            passed=passed,
            feedback=self._feedback(scores, metric_passed, aggregate, tmpl.threshold, passed),
            created_at=time.time(),
        )

        obs.evaluations_total.labels(template=tmpl.name, passed=str(passed).lower()).inc()
        obs.evaluation_score.labels(template=tmpl.name).observe(aggregate)

        logger.info(
            f"Evaluated task={task_id} agent={agent_id} template={tmpl.name}: "
            f"score={aggregate:.3f} passed={passed}"
        )

        return record

    def _run_scorer(self, metric: str, response: str, ctx: ScoringContext):
        scorer = self.registry.get_scorer(metric)
        if scorer is None:
            raise InvalidRequest(f"Unknown metric: {metric}")

        try:
            result = scorer.score(response, ctx)
        except RouterError:
            raise
        except Exception as e:
            logger.error(f"Scorer {metric} raised: {e}")
            raise EvaluationError(metric, str(e)) from e

        if not isinstance(result, tuple) or len(result) != 2:
            raise EvaluationError(metric, "score() must return (score, passed)")

        value, passed = result
        if value is None:
            return None, None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            raise EvaluationError(metric, f"score must be a number, got {value!r}")
        if not 0.0 <= value <= 1.0:
            raise EvaluationError(metric, f"score {value} outside [0, 1]")

        return float(value), bool(passed) if passed is not None else value >= 0.5

    @staticmethod
    def _feedback(
        scores: Dict[str, float],
        metric_passed: Dict[str, bool],
        aggregate: float,
        threshold: float,
        passed: bool,
    ) -> str:
        parts = [
            f"{metric}: {value:.2f} ({'pass' if metric_passed[metric] else 'fail'})"
            for metric, value in scores.items()
        ]
        verdict = "passed" if passed else "failed"
        return f"{'; '.join(parts)}. Aggregate {aggregate:.2f} {verdict} threshold {threshold:.2f}."

    def evaluate_request(self, request: EvaluationRequest) -> EvaluationRecord:
        return self.evaluate(
            prompt=request.prompt,
            response=request.response,
            template=request.template,
            expected_output=request.expected_output,
            context=request.context,
            agent_id=request.agent_id,
            task_id=request.task_id,
        )

    def evaluate_batch(
        self,
        items: List[Any],
        evaluate: Optional[Callable[[EvaluationRequest], EvaluationRecord]] = None,
    ) -> BatchEvaluationResult:
        """
        Evaluate up to batch_max items, reporting per-item success.

        Args:
            items: EvaluationRequest objects or dicts with the same fields
            evaluate: Per-item evaluation function (defaults to
                evaluate_request); lets callers persist each record

        Returns:
            BatchEvaluationResult

        Raises:
            InvalidRequest: Empty batch or more than batch_max items
        """
        if not isinstance(items, list) or not items:
            raise InvalidRequest("Batch must contain at least one item", field="items")
        if len(items) > self.batch_max:
            raise InvalidRequest(
                f"Batch of {len(items)} exceeds the maximum of {self.batch_max}", field="items"
            )

        evaluate = evaluate or self.evaluate_request
        results: List[Dict[str, Any]] = []
        successful = 0

        for index, item in enumerate(items):
            try:
                request = item if isinstance(item, EvaluationRequest) else EvaluationRequest.from_dict(item)
                record = evaluate(request)
                results.append({"index": index, "success": True, "record": record.to_dict()})
                successful += 1
            except RouterError as e:
                logger.warning(f"Batch item {index} failed: {e}")
                results.append({"index": index, "success": False, "error": e.to_dict()})
            except Exception as e:
                logger.error(f"Batch item {index} failed unexpectedly: {e}")
                results.append(
                    {
                        "index": index,
                        "success": False,
                        "error": {"error": "internal_error", "message": str(e)},
                    }
                )

        return BatchEvaluationResult(
            total=len(items),
            successful=successful,
            failed=len(items) - successful,
            results=results,
        )
