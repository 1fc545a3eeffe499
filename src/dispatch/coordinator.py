"""
Task Dispatch Coordinator

Owns the task lifecycle: submit -> route -> dispatch -> complete/fail/retry.

Each task's dispatch runs as its own asyncio task with a per-attempt
timeout. A failed attempt is recorded on the health tracker and retried
against a different eligible agent while the retry budget lasts. Tasks bound
to an experiment variant only ever retry against that variant's agent.
"""

from typing import Any, Dict, Iterable, Optional, Set
import asyncio
import logging
import time
import uuid

from core.config import RouterConfig
from core.errors import (
    DispatchFailure,
    DispatchTimeout,
    InvalidRequest,
    NoEligibleAgent,
    NotFound,
    RouterError,
    TaskFailed,
)
from observability import metrics as obs
from observability.tracing import create_span
from routing.capabilities import CapabilitySet, get_classifier
from routing.router import RoutingStrategyEngine

from .invoker import check_response
from .tasks import Task, TaskState, status_view
from .throttle import RateLimiter

logger = logging.getLogger(__name__)


class TaskDispatchCoordinator:
    """
    Routes and dispatches tasks to agents.

    Collaborators:
    - router: RoutingStrategyEngine (its filter holds the health tracker)
    - agents: AgentCache over the agent directory
    - health_tracker: AgentHealthTracker shared with the router's filter
    - invoker: object with async invoke(agent_id, payload)
    - experiments: ExperimentEngine for variant assignment (optional)
    - store: persistence with save_task/get_task (optional)
    """

    def __init__(
        self,
        router: RoutingStrategyEngine,
        agents,
        health_tracker,
        invoker,
        experiments=None,
        store=None,
        config: Optional[RouterConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        classifier=None,
    ):
        self.router = router
        self.agents = agents
        self.health = health_tracker
        self.invoker = invoker
        self.experiments = experiments
        self.store = store
        self.config = config or RouterConfig()
        self.rate_limiter = rate_limiter or RateLimiter(
            limit_per_tenant=self.config.rate_limit_per_tenant,
            window_seconds=self.config.rate_limit_window_seconds,
        )
        self.classifier = classifier or get_classifier()

        self.tasks: Dict[str, Task] = {}
        self._running: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_task(
        self,
        description: str,
        capabilities: Optional[Iterable[str]] = None,
        strategy: Optional[str] = None,
        experiment_id: Optional[str] = None,
        session_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> str:
        """
        Submit a task for routing and dispatch.

        Routing happens before this returns, so caller errors surface here;
        the agent call itself runs in the background.

        Args:
            description: Free-text task description
            capabilities: Required capability tags (inferred when omitted)
            strategy: Routing strategy name (config default when omitted)
            experiment_id: Route through this experiment's variant assignment
            session_id: Session key for sticky_session
            tenant_id: Caller identity for rate limiting
            payload: Extra input forwarded to the agent
            task_id: Caller-chosen id (generated when omitted)

        Returns:
            Task id

        Raises:
            InvalidRequest: Bad input
            RateLimitExceeded: Tenant over its submission rate
            NoEligibleAgent: No agent can take the task
            NotFound: Unknown experiment
            ExperimentNotActive: Experiment no longer accepts assignments
        """
        if not isinstance(description, str) or not description.strip():
            raise InvalidRequest("description is required", field="description")
        if payload is not None and not isinstance(payload, dict):
            raise InvalidRequest("payload must be an object", field="payload")
        if task_id is not None:
            if not isinstance(task_id, str) or not task_id:
                raise InvalidRequest("task_id must be a non-empty string", field="task_id")
            if task_id in self.tasks or (
                self.store is not None and self.store.get_task(task_id) is not None
            ):
                raise InvalidRequest(f"Task {task_id} already exists", field="task_id")

        required = self._resolve_capabilities(description, capabilities)
        chosen = self.router.parse_strategy(strategy)

        if tenant_id is not None:
            self.rate_limiter.check(tenant_id)

        task = Task(
            task_id=task_id or str(uuid.uuid4()),
            description=description,
            capabilities=required,
            strategy=chosen.value,
            experiment_id=experiment_id,
            session_id=session_id,
            tenant_id=tenant_id,
            payload=payload,
        )
        self.tasks[task.task_id] = task
        obs.tasks_submitted_total.labels(strategy=chosen.value).inc()

        try:
            if experiment_id is not None:
                if self.experiments is None:
                    raise InvalidRequest("Experiments are not enabled", field="experiment_id")
                assignment = self.experiments.assign(experiment_id, task.task_id)
                task.variant = assignment.variant
                agent_id = assignment.agent_id
            else:
                decision = self.router.select(
                    required, chosen, self.agents.active(), session_id=session_id
                )
                agent_id = decision.agent_id
        except RouterError as e:
            self._record_failure(task, e)
            raise

        task.agent_id = agent_id
        task.transition(TaskState.ASSIGNED)
        self._save(task)
        obs.active_tasks.inc()

        if experiment_id is not None:
            logger.info(f"Task {task.task_id} assigned to {agent_id} via {experiment_id}/{task.variant}")
        else:
            logger.info(
                f"Task {task.task_id} assigned to {agent_id} "
                f"(strategy={chosen.value}, capabilities={required.to_list()})"
            )

        handle = asyncio.create_task(self._run(task))
        self._running[task.task_id] = handle
        # Also covers tasks cancelled before _run ever starts
        handle.add_done_callback(lambda _, tid=task.task_id: self._running.pop(tid, None))
        return task.task_id

    def _resolve_capabilities(self, description: str, capabilities) -> CapabilitySet:
        if capabilities is None:
            return self.classifier.infer(description)
        if not isinstance(capabilities, (str, list, tuple, set, frozenset, CapabilitySet)):
            raise InvalidRequest("capabilities must be a list of tags", field="capabilities")
        try:
            required = CapabilitySet.coerce(capabilities)
        except TypeError as e:
            raise InvalidRequest(str(e), field="capabilities")
        if not required:
            raise InvalidRequest("capabilities must not be empty", field="capabilities")
        return required

    # ------------------------------------------------------------------
    # Dispatch loop
    # ------------------------------------------------------------------

    async def _run(self, task: Task) -> None:
        try:
            await self._dispatch(task)
        except asyncio.CancelledError:
            self._mark_cancelled(task)
            raise
        except Exception as e:
            logger.error(f"Task {task.task_id} aborted: {e}")
            self._finish(task, TaskState.FAILED, error=TaskFailed(task.task_id, e).to_dict())

    async def _dispatch(self, task: Task) -> None:
        agent_id = task.agent_id
        excluded: Set[str] = set()
        retries_left = self.config.max_retries
        last_error: Optional[DispatchFailure] = None

        while True:
            if not self.health.begin_call(agent_id):
                # Circuit opened (or probe taken) since routing; not an agent failure
                blocked = DispatchFailure(agent_id, "circuit open")
                if task.experiment_id is not None:
                    self._fail(task, last_error or blocked)
                    return
                excluded.add(agent_id)
                agent_id = self._reroute(task, excluded)
                if agent_id is None:
                    self._fail(task, last_error or blocked)
                    return
                continue

            task.transition(TaskState.RUNNING)
            task.attempts += 1
            task.tried_agents.append(agent_id)
            self._save(task)

            try:
                result, latency_ms = await self._attempt(task, agent_id)
            except asyncio.CancelledError:
                self.health.release(agent_id)
                obs.dispatch_attempts_total.labels(outcome="cancelled").inc()
                raise
            except DispatchFailure as e:
                last_error = e
                self.health.record_failure(agent_id)
                self.agents.record_outcome(agent_id, success=False)

                if retries_left <= 0:
                    logger.warning(f"Task {task.task_id} out of retries after {task.attempts} attempts")
                    self._fail(task, e)
                    return
                retries_left -= 1

                if task.experiment_id is None:
                    excluded.add(agent_id)
                    next_agent = self._reroute(task, excluded)
                    if next_agent is None:
                        self._fail(task, e)
                        return
                    agent_id = next_agent
                else:
                    task.state = TaskState.ASSIGNED
                logger.info(f"Retrying task {task.task_id} on {agent_id} ({retries_left} retries left)")
                continue

            self.health.record_success(agent_id)
            self.agents.record_outcome(agent_id, success=True, latency_ms=latency_ms)
            self._finish(task, TaskState.COMPLETED, result=result)
            return

    def _reroute(self, task: Task, excluded: Set[str]) -> Optional[str]:
        """Pick another eligible agent, or None if nothing is left"""
        try:
            decision = self.router.select(
                task.capabilities,
                task.strategy,
                self.agents.active(),
                session_id=task.session_id,
                exclude=excluded,
            )
        except NoEligibleAgent:
            logger.warning(f"No alternative agent for task {task.task_id}, excluded={sorted(excluded)}")
            return None

        task.agent_id = decision.agent_id
        task.state = TaskState.ASSIGNED
        task.updated_at = time.time()
        return decision.agent_id

    async def _attempt(self, task: Task, agent_id: str):
        payload = {
            "task_id": task.task_id,
            "description": task.description,
            "capabilities": task.capabilities.to_list(),
            "input": task.payload or {},
        }
        timeout = self.config.dispatch_timeout_seconds

        with create_span(
            "dispatch_attempt",
            {"task_id": task.task_id, "agent_id": agent_id, "attempt": task.attempts},
        ):
            start = time.time()
            try:
                with obs.MetricsContext(obs.dispatch_latency):
                    response = await asyncio.wait_for(
                        self.invoker.invoke(agent_id, payload), timeout=timeout
                    )
                result = check_response(agent_id, response)
            except asyncio.TimeoutError:
                obs.dispatch_attempts_total.labels(outcome="timeout").inc()
                logger.warning(f"Dispatch of {task.task_id} to {agent_id} timed out after {timeout}s")
                raise DispatchTimeout(agent_id, timeout)
            except DispatchFailure:
                obs.dispatch_attempts_total.labels(outcome="failure").inc()
                raise
            except Exception as e:
                obs.dispatch_attempts_total.labels(outcome="failure").inc()
                logger.warning(f"Dispatch of {task.task_id} to {agent_id} failed: {e}")
                raise DispatchFailure(agent_id, str(e)) from e

        obs.dispatch_attempts_total.labels(outcome="success").inc()
        return result, (time.time() - start) * 1000.0

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _fail(self, task: Task, cause: BaseException) -> None:
        error = TaskFailed(task.task_id, cause)
        logger.warning(str(error))
        self._finish(task, TaskState.FAILED, error=error.to_dict())

    def _record_failure(self, task: Task, error: RouterError) -> None:
        """Routing rejected a freshly submitted task"""
        task.error = error.to_dict()
        task.transition(TaskState.FAILED)
        obs.tasks_finished_total.labels(state=TaskState.FAILED.value).inc()
        self._save(task)
        self._evict(task)

    def _finish(self, task: Task, state: TaskState, result=None, error=None) -> None:
        if task.is_terminal:
            return
        task.result = result
        task.error = error
        task.transition(state)
        obs.tasks_finished_total.labels(state=state.value).inc()
        obs.active_tasks.dec()
        self._save(task)
        self._evict(task)
        logger.info(f"Task {task.task_id} {state.value} after {task.attempts} attempts")

    def _mark_cancelled(self, task: Task) -> None:
        self._finish(task, TaskState.CANCELLED)

    def _save(self, task: Task) -> None:
        if self.store is not None:
            self.store.save_task(task.to_dict())

    def _evict(self, task: Task) -> None:
        """Terminal tasks are served from the store once persisted"""
        if self.store is not None:
            self.tasks.pop(task.task_id, None)

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def get_task_status(self, task_id: str) -> Dict[str, Any]:
        """
        Current state of a task.

        Raises:
            NotFound: Unknown task id
        """
        task = self.tasks.get(task_id)
        if task is not None:
            return task.status()

        if self.store is not None:
            stored = self.store.get_task(task_id)
            if stored is not None:
                return status_view(stored)

        raise NotFound("task", task_id)

    def cancel_task(self, task_id: str) -> Dict[str, Any]:
        """
        Cancel a task.

        The in-flight agent call is cancelled. Neither health counters nor
        experiment metrics are touched. Cancelling a finished task is a no-op.

        Raises:
            NotFound: Unknown task id
        """
        task = self.tasks.get(task_id)
        if task is None:
            # Finished tasks leave memory; cancelling them is a no-op
            return self.get_task_status(task_id)

        if not task.is_terminal:
            self._mark_cancelled(task)
            running = self._running.get(task_id)
            if running is not None and not running.done():
                running.cancel()
            logger.info(f"Cancelled task {task_id}")

        return task.status()

    async def wait_for_task(self, task_id: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Wait until a task reaches a terminal state (or the timeout passes).

        Raises:
            NotFound: Unknown task id
        """
        task = self.tasks.get(task_id)
        running = self._running.get(task_id)
        if running is not None:
            await asyncio.wait({running}, timeout=timeout)
        if task is not None:
            return task.status()
        return self.get_task_status(task_id)

    async def shutdown(self) -> None:
        """Cancel every in-flight task"""
        running = list(self._running.values())
        for handle in running:
            handle.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        logger.info(f"Dispatch coordinator stopped ({len(running)} tasks cancelled)")
