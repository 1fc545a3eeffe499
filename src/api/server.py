"""
FastAPI endpoints for the Agent Task Router.

REST surface over RouterService: task submission and status, evaluations,
experiments, flow adherence, health and Prometheus metrics.
"""

from typing import Any, Dict, List, Optional
import math

from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field

from core.errors import (
    ExperimentNotActive,
    InvalidRequest,
    NoEligibleAgent,
    NotFound,
    RateLimitExceeded,
    RouterError,
)
from observability.metrics import metrics_collector

# Caller errors first; anything else is a server-side failure
ERROR_STATUS = [
    (InvalidRequest, 400),
    (NotFound, 404),
    (ExperimentNotActive, 409),
    (RateLimitExceeded, 429),
    (NoEligibleAgent, 503),
]


def status_for(error: RouterError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


def finite(value: Any) -> Any:
    """Replace non-finite floats (e.g. an infinite t statistic) with None for JSON"""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: finite(v) for k, v in value.items()}
    if isinstance(value, list):
        return [finite(v) for v in value]
    return value


# Request/Response models


class SubmitTaskRequest(BaseModel):
    """Request to submit a task"""

    description: str = Field(..., min_length=1, description="Free-text task description")
    capabilities: Optional[List[str]] = Field(None, description="Required capabilities")
    strategy: Optional[str] = Field(None, description="Routing strategy")
    experiment_id: Optional[str] = Field(None, description="Experiment to route through")
    session_id: Optional[str] = Field(None, description="Session for sticky routing")
    tenant_id: Optional[str] = Field(None, description="Caller identity for rate limiting")
    payload: Optional[Dict[str, Any]] = Field(None, description="Input forwarded to the agent")
    task_id: Optional[str] = Field(None, description="Caller-chosen task id")


class SubmitTaskResponse(BaseModel):
    task_id: str


class EvaluationRequestModel(BaseModel):
    """Request to evaluate one response"""

    agent_id: str
    task_id: str
    prompt: str
    response: str
    template: str = "comprehensive"
    expected_output: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class BatchEvaluationRequestModel(BaseModel):
    """Items are validated one by one so a bad item fails alone"""

    items: List[Dict[str, Any]]


class CreateExperimentRequest(BaseModel):
    """Request to create an A/B experiment"""

    name: str
    variant_a: str
    variant_b: str
    traffic_split: float = Field(0.5, description="Probability of routing to variant B")
    min_samples: int = 100
    confidence_level: float = 0.95
    metrics: Optional[List[Any]] = Field(
        None, description="Metric names or {name, weight, higher_is_better}"
    )


class CreateExperimentResponse(BaseModel):
    experiment_id: str


class AssignVariantRequest(BaseModel):
    task_id: str


class FlowCheckRequest(BaseModel):
    """Request to check flow adherence"""

    task_id: str
    expected_flow: List[str]
    actual_flow: List[str]


def create_app(service) -> FastAPI:
    """
    Build the HTTP app around a RouterService.

    Args:
        service: RouterService instance

    Returns:
        FastAPI application
    """
    app = FastAPI(title="Agent Task Router API", version="1.0.0")
    app.state.service = service

    @app.exception_handler(RouterError)
    async def router_error_handler(request: Request, exc: RouterError):
        headers = None
        if isinstance(exc, RateLimitExceeded):
            headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
        return JSONResponse(status_code=status_for(exc), content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        field = ".".join(str(p) for p in errors[0]["loc"][1:]) if errors else None
        message = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(
            status_code=400,
            content=InvalidRequest(message, field=field or None).to_dict(),
        )

    # Tasks

    @app.post("/tasks", response_model=SubmitTaskResponse, status_code=202)
    async def submit_task(request: SubmitTaskRequest):
        """
        Submit a task.

        Routing is synchronous: 503 when no agent qualifies, 409 when the
        experiment no longer accepts assignments.
        """
        task_id = await service.submit_task(
            request.description,
            capabilities=request.capabilities,
            strategy=request.strategy,
            experiment_id=request.experiment_id,
            session_id=request.session_id,
            tenant_id=request.tenant_id,
            payload=request.payload,
            task_id=request.task_id,
        )
        return SubmitTaskResponse(task_id=task_id)

    @app.get("/tasks/{task_id}")
    async def get_task_status(task_id: str):
        return service.get_task_status(task_id)

    @app.post("/tasks/{task_id}/cancel")
    async def cancel_task(task_id: str):
        return service.cancel_task(task_id)

    # Evaluations

    @app.post("/evaluations", status_code=201)
    async def run_evaluation(request: EvaluationRequestModel):
        record = service.run_evaluation(
            agent_id=request.agent_id,
            task_id=request.task_id,
            prompt=request.prompt,
            response=request.response,
            template=request.template,
            expected_output=request.expected_output,
            context=request.context,
        )
        return record.to_dict()

    @app.post("/evaluations/batch")
    async def run_batch_evaluation(request: BatchEvaluationRequestModel):
        return service.run_batch_evaluation(request.items)

    @app.get("/evaluations")
    async def list_evaluations(
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        limit: int = Query(100, ge=1, le=1000),
    ):
        return {"evaluations": service.list_evaluations(agent_id=agent_id, task_id=task_id, limit=limit)}

    @app.get("/evaluations/{eval_id}")
    async def get_evaluation(eval_id: str):
        return service.get_evaluation(eval_id)

    @app.get("/templates")
    async def list_templates():
        return {"templates": service.list_templates()}

    # Experiments

    @app.post("/experiments", response_model=CreateExperimentResponse, status_code=201)
    async def create_experiment(request: CreateExperimentRequest):
        experiment_id = service.create_experiment(
            name=request.name,
            variant_a=request.variant_a,
            variant_b=request.variant_b,
            traffic_split=request.traffic_split,
            min_samples=request.min_samples,
            confidence_level=request.confidence_level,
            metrics=request.metrics,
        )
        return CreateExperimentResponse(experiment_id=experiment_id)

    @app.get("/experiments")
    async def list_experiments(status: Optional[str] = None):
        return {"experiments": service.list_experiments(status)}

    @app.get("/experiments/{experiment_id}")
    async def get_experiment(experiment_id: str):
        return service.get_experiment(experiment_id)

    @app.post("/experiments/{experiment_id}/assign")
    async def assign_variant(experiment_id: str, request: AssignVariantRequest):
        return service.assign_variant(experiment_id, request.task_id)

    @app.get("/experiments/{experiment_id}/results")
    async def get_experiment_results(experiment_id: str):
        return finite(service.get_experiment_results(experiment_id))

    @app.post("/experiments/{experiment_id}/stop")
    async def stop_experiment(experiment_id: str):
        return finite(service.stop_experiment(experiment_id))

    @app.post("/experiments/{experiment_id}/archive")
    async def archive_experiment(experiment_id: str):
        return service.archive_experiment(experiment_id)

    # Flow adherence

    @app.post("/flows/check")
    async def check_flow_adherence(request: FlowCheckRequest):
        trace = service.check_flow_adherence(
            request.task_id, request.expected_flow, request.actual_flow
        )
        return trace.to_dict()

    # Operations

    @app.get("/health")
    async def health():
        return {"status": "ok", "agents": service.agent_health()}

    @app.get("/metrics")
    async def metrics():
        return Response(content=metrics_collector.get_metrics(), media_type=CONTENT_TYPE_LATEST)

    return app
