"""
Core Module

Configuration, error taxonomy and logging setup shared by every router component.
"""

from .config import RouterConfig
from .errors import (
    RouterError,
    InvalidRequest,
    NoEligibleAgent,
    DispatchFailure,
    DispatchTimeout,
    TaskFailed,
    ExperimentNotActive,
    EvaluationError,
    NotFound,
    RateLimitExceeded,
)
from .log import configure_logging

__all__ = [
    "RouterConfig",
    "RouterError",
    "InvalidRequest",
    "NoEligibleAgent",
    "DispatchFailure",
    "DispatchTimeout",
    "TaskFailed",
    "ExperimentNotActive",
    "EvaluationError",
    "NotFound",
    "RateLimitExceeded",
    "configure_logging",
]
