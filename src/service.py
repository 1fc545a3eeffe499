"""
Router Service

Wires the router components together and exposes the caller-facing
operations: task submission and status, evaluation, experiments and flow
adherence. Transport (HTTP, RPC) lives in the api package.
"""

from typing import Any, Dict, List, Optional
import logging

from core.config import RouterConfig
from core.errors import InvalidRequest, NotFound
from dispatch import HttpInvoker, TaskDispatchCoordinator, TaskState
from evaluation import (
    EvaluationEngine,
    EvaluationRecord,
    EvaluationRequest,
    FlowTrace,
    MetricRegistry,
    check_flow,
)
from evaluation.templates import EvaluationTemplate
from experiments import ExperimentEngine
from health import AgentHealthTracker
from routing import (
    AgentCache,
    EligibilityFilter,
    ManifestRegistry,
    RoutingStrategyEngine,
)
from storage import SQLiteStore

logger = logging.getLogger(__name__)


def _require(value, name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequest(f"{name} is required", field=name)


class RouterService:
    """
    Capability-aware task router with evaluation and A/B experiments.

    Args:
        config: Router configuration (defaults to RouterConfig())
        directory: Agent directory (defaults to an empty ManifestRegistry)
        invoker: Object with async invoke(agent_id, payload); defaults to
            HttpInvoker posting to each manifest's endpoint
        store: Persistence (defaults to SQLiteStore at config.db_path)
        clock: Monotonic clock for the health tracker
    """

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        directory=None,
        invoker=None,
        store: Optional[SQLiteStore] = None,
        clock=None,
    ):
        self.config = config or RouterConfig()
        self.store = store or SQLiteStore(self.config.db_path)
        self.directory = directory if directory is not None else ManifestRegistry()
        self.agents = AgentCache(self.directory, ttl_seconds=self.config.agent_cache_ttl_seconds)

        if clock is not None:
            self.health = AgentHealthTracker.from_config(self.config, clock=clock)
        else:
            self.health = AgentHealthTracker.from_config(self.config)

        self.router = RoutingStrategyEngine(
            eligibility_filter=EligibilityFilter(self.health),
            default_strategy=self.config.default_strategy,
        )
        self.metric_registry = MetricRegistry()
        self.evaluator = EvaluationEngine(self.metric_registry, batch_max=self.config.batch_max_items)
        self.experiments = ExperimentEngine(
            store=self.store, auto_complete=self.config.auto_complete_experiments
        )
        self.coordinator = TaskDispatchCoordinator(
            router=self.router,
            agents=self.agents,
            health_tracker=self.health,
            invoker=invoker if invoker is not None else HttpInvoker(self._endpoint_for),
            experiments=self.experiments,
            store=self.store,
            config=self.config,
        )

        logger.info(
            f"Router service ready (strategy={self.config.default_strategy}, "
            f"auto_complete_experiments={self.config.auto_complete_experiments})"
        )

    def _endpoint_for(self, agent_id: str) -> Optional[str]:
        lookup = getattr(self.directory, "get", None)
        manifest = lookup(agent_id) if lookup is not None else None
        return getattr(manifest, "endpoint", None)

    # Tasks

    async def submit_task(
        self,
        description: str,
        capabilities: Optional[List[str]] = None,
        strategy: Optional[str] = None,
        experiment_id: Optional[str] = None,
        session_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> str:
        return await self.coordinator.submit_task(
            description,
            capabilities=capabilities,
            strategy=strategy,
            experiment_id=experiment_id,
            session_id=session_id,
            tenant_id=tenant_id,
            payload=payload,
            task_id=task_id,
        )

    def get_task_status(self, task_id: str) -> Dict[str, Any]:
        return self.coordinator.get_task_status(task_id)

    def cancel_task(self, task_id: str) -> Dict[str, Any]:
        return self.coordinator.cancel_task(task_id)

    async def wait_for_task(self, task_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        return await self.coordinator.wait_for_task(task_id, timeout=timeout)

    # Evaluation

    def run_evaluation(
        self,
        agent_id: str,
        task_id: str,
        prompt: str,
        response: str,
        template: str,
        expected_output: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        experiment_id: Optional[str] = None,
    ) -> EvaluationRecord:
        """
        Evaluate a response, store the record, then update experiment
        aggregates.

        The experiment is the one the task was submitted under, unless
        experiment_id names one explicitly. Cancelled tasks never feed
        experiment metrics.

        Raises:
            InvalidRequest: Missing agent_id, task_id or prompt, or bad template
            EvaluationError: A scorer misbehaved
        """
        _require(agent_id, "agent_id")
        _require(task_id, "task_id")
        _require(prompt, "prompt")

        record = self.evaluator.evaluate(
            prompt=prompt,
            response=response,
            template=template,
            expected_output=expected_output,
            context=context,
            agent_id=agent_id,
            task_id=task_id,
        )

        # Aggregates only move once the record is durable
        self.store.append_evaluation(record.to_dict())

        task_experiment, task_state = self._task_context(task_id)
        if experiment_id is None:
            experiment_id = task_experiment

        if experiment_id is not None:
            if task_state == TaskState.CANCELLED.value:
                logger.info(f"Task {task_id} was cancelled, evaluation not counted for {experiment_id}")
            else:
                self.experiments.record_evaluation(experiment_id, task_id, record)

        return record

    def _task_context(self, task_id: str):
        """(experiment_id, state) of a routed task, from memory or the store"""
        task = self.coordinator.get_task(task_id)
        if task is not None:
            return task.experiment_id, task.state.value
        stored = self.store.get_task(task_id)
        if stored is not None:
            return stored.get("experiment_id"), stored.get("state")
        return None, None

    def _evaluate_request(self, request: EvaluationRequest) -> EvaluationRecord:
        return self.run_evaluation(
            agent_id=request.agent_id,
            task_id=request.task_id,
            prompt=request.prompt,
            response=request.response,
            template=request.template,
            expected_output=request.expected_output,
            context=request.context,
        )

    def run_batch_evaluation(self, items: List[Any]) -> Dict[str, Any]:
        return self.evaluator.evaluate_batch(items, evaluate=self._evaluate_request).to_dict()

    def register_template(self, template: EvaluationTemplate, replace: bool = False) -> None:
        try:
            self.metric_registry.register_template(template, replace=replace)
        except ValueError as e:
            raise InvalidRequest(str(e), field="template")

    def list_templates(self) -> List[Dict[str, Any]]:
        return [
            self.metric_registry.get_template(name).to_dict()
            for name in self.metric_registry.template_names()
        ]

    def list_evaluations(
        self, agent_id: Optional[str] = None, task_id: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        return self.store.list_evaluations(agent_id=agent_id, task_id=task_id, limit=limit)

    def get_evaluation(self, eval_id: str) -> Dict[str, Any]:
        record = self.store.get_evaluation(eval_id)
        if record is None:
            raise NotFound("evaluation", eval_id)
        return record

    # Experiments

    def create_experiment(
        self,
        name: str,
        variant_a: str,
        variant_b: str,
        traffic_split: float = 0.5,
        min_samples: int = 100,
        confidence_level: float = 0.95,
        metrics: Optional[List[Any]] = None,
    ) -> str:
        experiment = self.experiments.create_experiment(
            name=name,
            variant_a=variant_a,
            variant_b=variant_b,
            traffic_split=traffic_split,
            min_samples=min_samples,
            confidence_level=confidence_level,
            metrics=metrics,
        )
        return experiment.experiment_id

    def get_experiment(self, experiment_id: str) -> Dict[str, Any]:
        return self.experiments.get_experiment(experiment_id).to_dict()

    def assign_variant(self, experiment_id: str, task_id: str) -> Dict[str, Any]:
        assignment = self.experiments.assign(experiment_id, task_id)
        return {
            "experiment_id": experiment_id,
            "task_id": task_id,
            "variant": assignment.variant,
            "agent_id": assignment.agent_id,
        }

    def get_experiment_results(self, experiment_id: str) -> Dict[str, Any]:
        return self.experiments.results(experiment_id)

    def stop_experiment(self, experiment_id: str) -> Dict[str, Any]:
        return self.experiments.stop(experiment_id)

    def archive_experiment(self, experiment_id: str) -> Dict[str, Any]:
        return self.experiments.archive(experiment_id).to_dict()

    def list_experiments(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self.experiments.list_experiments(status)]

    # Flow adherence

    def check_flow_adherence(
        self, task_id: str, expected_flow: List[str], actual_flow: List[str]
    ) -> FlowTrace:
        """
        Compare a task's observed steps to its expected flow.

        Traces are computed once per task; later calls return the stored one.
        """
        _require(task_id, "task_id")

        existing = self.store.get_flow_trace(task_id)
        if existing is not None:
            logger.debug(f"Flow trace for {task_id} already recorded")
            return FlowTrace.from_dict(existing)

        trace = check_flow(expected_flow, actual_flow, task_id=task_id)
        self.store.save_flow_trace(trace.to_dict())
        return trace

    # Health

    def agent_health(self) -> Dict[str, Dict[str, Any]]:
        return self.health.snapshot()

    async def shutdown(self) -> None:
        await self.coordinator.shutdown()
        self.store.close()
