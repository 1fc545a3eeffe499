"""
Task lifecycle model.

submitted -> assigned -> running -> completed | failed, with cancelled
reachable from any non-terminal state. A terminal task never changes state
again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time

from routing.capabilities import CapabilitySet


class TaskState(Enum):
    """Task lifecycle states"""

    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED})


class InvalidTransition(Exception):
    """Attempted to move a task out of a terminal state"""


@dataclass
class Task:
    """
    A unit of work routed to one agent.

    Owned by the dispatch coordinator for its whole lifetime.
    """

    task_id: str
    description: str
    capabilities: CapabilitySet
    strategy: Optional[str] = None
    experiment_id: Optional[str] = None
    variant: Optional[str] = None
    session_id: Optional[str] = None
    tenant_id: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    state: TaskState = TaskState.SUBMITTED
    agent_id: Optional[str] = None
    attempts: int = 0
    tried_agents: List[str] = field(default_factory=list)
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: TaskState) -> None:
        """
        Move to a new state.

        Raises:
            InvalidTransition: Task already terminal
        """
        if self.is_terminal:
            raise InvalidTransition(
                f"Task {self.task_id} is {self.state.value}, cannot become {new_state.value}"
            )
        self.state = new_state
        self.updated_at = time.time()

    def status(self) -> Dict[str, Any]:
        """Caller-facing status view"""
        status = {
            "task_id": self.task_id,
            "state": self.state.value,
            "agent_id": self.agent_id,
            "attempts": self.attempts,
            "capabilities": self.capabilities.to_list(),
            "strategy": self.strategy,
            "experiment_id": self.experiment_id,
            "variant": self.variant,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.result is not None:
            status["result"] = self.result
        if self.error is not None:
            status["error"] = self.error
        return status

    def to_dict(self) -> Dict[str, Any]:
        data = self.status()
        data.update(
            {
                "description": self.description,
                "session_id": self.session_id,
                "tenant_id": self.tenant_id,
                "payload": self.payload,
                "tried_agents": list(self.tried_agents),
                "result": self.result,
                "error": self.error,
            }
        )
        return data


STATUS_FIELDS = (
    "task_id",
    "state",
    "agent_id",
    "attempts",
    "capabilities",
    "strategy",
    "experiment_id",
    "variant",
    "created_at",
    "updated_at",
)


def status_view(data: Dict[str, Any]) -> Dict[str, Any]:
    """Status view of a persisted task record, shaped like Task.status()"""
    status = {name: data.get(name) for name in STATUS_FIELDS}
    for name in ("result", "error"):
        if data.get(name) is not None:
            status[name] = data[name]
    return status
