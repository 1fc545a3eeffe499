"""
Observability module for tracing and monitoring.

Provides OpenTelemetry spans and Prometheus metrics for the router.
"""

from .tracing import (
    setup_tracing,
    create_span,
    get_current_span,
    get_tracer,
    shutdown_tracing,
)

__all__ = [
    'setup_tracing',
    'create_span',
    'get_current_span',
    'get_tracer',
    'shutdown_tracing',
]
