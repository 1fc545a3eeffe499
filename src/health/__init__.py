"""
Agent Health Module

Per-agent circuit breakers that keep failing endpoints out of routing until
they recover through a half-open probe.
"""

from .circuit_breaker import CircuitBreaker, CircuitBreakerEvent, CircuitState
from .tracker import AgentHealthTracker, HealthState

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerEvent",
    "CircuitState",
    "AgentHealthTracker",
    "HealthState",
]
