"""
Distributed tracing with OpenTelemetry.

Spans wrap routing, dispatch and evaluation. Until setup_tracing() installs
a provider, spans come from the OpenTelemetry API default (no-op) tracer.
"""

import logging
from typing import Dict, Any, Optional, Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.trace import Status, StatusCode, Span

logger = logging.getLogger(__name__)

# Global tracer instance
_tracer: Optional[trace.Tracer] = None
_tracer_provider: Optional[TracerProvider] = None


def setup_tracing(
    service_name: str, otlp_endpoint: Optional[str] = None, console_export: bool = False
) -> trace.Tracer:
    """
    Initialize OpenTelemetry tracing for the router.

    Args:
        service_name: Name of the service (e.g., "agent-task-router")
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
        console_export: If True, also export spans to console for debugging

    Returns:
        Configured tracer instance
    """
    global _tracer, _tracer_provider

    resource = Resource(attributes={SERVICE_NAME: service_name})
    _tracer_provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        try:
            otlp_exporter = OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True)
            _tracer_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
            logger.info(f"Configured OTLP exporter: {otlp_endpoint}")
        except Exception as e:
            logger.warning(f"Failed to configure OTLP exporter: {e}")

    if console_export:
        _tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        logger.info("Configured console span exporter")

    _tracer = _tracer_provider.get_tracer(__name__)

    logger.info(f"Initialized tracing for service: {service_name}")

    return _tracer


def get_tracer() -> trace.Tracer:
    """
    Get the router tracer.

    Returns:
        Configured tracer, or the API default tracer before setup
    """
    if _tracer is None:
        return trace.get_tracer(__name__)
    return _tracer


def is_tracing_configured() -> bool:
    return _tracer is not None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
) -> Iterator[Span]:
    """
    Create a trace span with optional attributes.

    Usage:
        with create_span("dispatch", {"task_id": "123"}):
            ...

    Args:
        name: Span name (e.g., "route_task", "dispatch_attempt")
        attributes: Optional span attributes
        kind: Span kind

    Yields:
        Active span
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(name, kind=kind) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, str(value))

        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def get_current_span() -> Span:
    return trace.get_current_span()


def shutdown_tracing():
    """
    Shutdown tracing and flush all pending spans.

    Should be called before application exit.
    """
    global _tracer_provider, _tracer

    if _tracer_provider:
        _tracer_provider.shutdown()
        logger.info("Tracing shutdown complete")

    _tracer_provider = None
    _tracer = None
