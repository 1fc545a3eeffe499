"""
Dispatch Module

Task lifecycle, agent invocation and per-tenant throttling.
"""

from .tasks import Task, TaskState, TERMINAL_STATES, InvalidTransition
from .invoker import AgentInvoker, CallableInvoker, HttpInvoker, check_response
from .throttle import RateLimiter
from .coordinator import TaskDispatchCoordinator

__all__ = [
    "Task",
    "TaskState",
    "TERMINAL_STATES",
    "InvalidTransition",
    "AgentInvoker",
    "CallableInvoker",
    "HttpInvoker",
    "check_response",
    "RateLimiter",
    "TaskDispatchCoordinator",
]
