"""
Router error taxonomy.

Caller errors (InvalidRequest, NoEligibleAgent, ExperimentNotActive) are never
recovered locally. Dispatch errors are retried by the coordinator and surface
as TaskFailed once the retry budget is spent.
"""

from typing import Any, Dict, Iterable, Optional


class RouterError(Exception):
    """Base class for all router errors."""

    code = "router_error"

    def to_dict(self) -> Dict[str, Any]:
        """Caller-facing error payload"""
        return {"error": self.code, "message": str(self)}


class InvalidRequest(RouterError, ValueError):
    """Missing or malformed request field."""

    code = "invalid_request"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.field:
            payload["field"] = self.field
        return payload


class NoEligibleAgent(RouterError):
    """No agent satisfies the capability and health filter."""

    code = "no_eligible_agent"

    def __init__(self, capabilities: Iterable[str], strategy: Optional[str] = None):
        self.capabilities = list(capabilities)
        self.strategy = strategy
        super().__init__(f"No suitable agents found for capabilities {self.capabilities}")

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["capabilities"] = self.capabilities
        payload["strategy"] = self.strategy
        return payload


class DispatchFailure(RouterError):
    """Agent call failed (network error, non-2xx response, agent error)."""

    code = "dispatch_failure"

    def __init__(self, agent_id: str, message: str):
        super().__init__(f"Dispatch to {agent_id} failed: {message}")
        self.agent_id = agent_id


class DispatchTimeout(DispatchFailure):
    """Agent call exceeded the per-attempt timeout."""

    code = "dispatch_timeout"

    def __init__(self, agent_id: str, timeout_seconds: float):
        super().__init__(agent_id, f"timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class TaskFailed(RouterError):
    """Task could not be completed; wraps the underlying error."""

    code = "task_failed"

    def __init__(self, task_id: str, cause: BaseException):
        super().__init__(f"Task {task_id} failed: {cause}")
        self.task_id = task_id
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["task_id"] = self.task_id
        payload["cause"] = getattr(self.cause, "code", type(self.cause).__name__)
        return payload


class ExperimentNotActive(RouterError):
    """Variant assignment requested against a non-active experiment."""

    code = "experiment_not_active"

    def __init__(self, experiment_id: str, status: str):
        super().__init__(f"Experiment {experiment_id} is {status}, not active")
        self.experiment_id = experiment_id
        self.status = status


class EvaluationError(RouterError):
    """A metric scorer misbehaved (raised or returned an invalid score)."""

    code = "evaluation_error"

    def __init__(self, metric: str, message: str):
        super().__init__(f"Metric {metric} failed: {message}")
        self.metric = metric


class NotFound(RouterError, KeyError):
    """Unknown task, experiment or evaluation identifier."""

    code = "not_found"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier

    def __str__(self) -> str:
        return self.args[0]


class RateLimitExceeded(RouterError):
    """Caller exceeded its submission rate."""

    code = "rate_limit_exceeded"

    def __init__(self, key: str, retry_after: float):
        super().__init__(f"Rate limit exceeded for {key}, retry after {retry_after:.1f}s")
        self.key = key
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["retry_after"] = self.retry_after
        return payload
