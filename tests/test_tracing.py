"""
Tests for OpenTelemetry tracing and Prometheus metrics helpers.

Verifies span creation before and after setup, error recording and metric
exposition.
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind

import observability.tracing as tracing_module
from observability import metrics as obs
from observability.tracing import (
    create_span,
    get_current_span,
    get_tracer,
    is_tracing_configured,
    setup_tracing,
    shutdown_tracing,
)


@pytest.fixture
def exporter():
    """Tracing configured with an in-memory exporter"""
    setup_tracing("test-router")
    memory = InMemorySpanExporter()
    tracing_module._tracer_provider.add_span_processor(SimpleSpanProcessor(memory))
    yield memory
    shutdown_tracing()


class TestTracingSetup:
    """Test tracing setup and configuration"""

    def test_setup_tracing(self):
        tracer = setup_tracing("test-router", console_export=False)

        assert tracer is not None
        assert get_tracer() is tracer
        assert is_tracing_configured()

        shutdown_tracing()
        assert not is_tracing_configured()

    def test_spans_before_setup_are_safe(self):
        shutdown_tracing()
        with create_span("route_task", {"strategy": "round_robin"}) as span:
            assert span is not None

    def test_shutdown_twice(self):
        setup_tracing("test-router")
        shutdown_tracing()
        shutdown_tracing()


class TestSpanCreation:
    """Test span creation and attributes"""

    def test_attributes_recorded(self, exporter):
        with create_span("dispatch_attempt", {"task_id": "t1", "attempt": 2, "agent_id": None}):
            pass

        span = exporter.get_finished_spans()[0]
        assert span.name == "dispatch_attempt"
        assert span.attributes["task_id"] == "t1"
        assert span.attributes["attempt"] == "2"
        assert "agent_id" not in span.attributes

    def test_current_span(self, exporter):
        with create_span("evaluate") as span:
            assert get_current_span() is span

    def test_nested_spans_share_trace(self, exporter):
        with create_span("route_task"):
            with create_span("dispatch_attempt", kind=SpanKind.CLIENT):
                pass

        inner, outer = exporter.get_finished_spans()
        assert inner.context.trace_id == outer.context.trace_id
        assert inner.parent.span_id == outer.context.span_id
        assert inner.kind == SpanKind.CLIENT

    def test_exception_marks_span(self, exporter):
        with pytest.raises(ValueError):
            with create_span("evaluate"):
                raise ValueError("scorer failed")

        span = exporter.get_finished_spans()[0]
        assert not span.status.is_ok
        assert span.events[0].name == "exception"


class TestMetrics:
    def test_metrics_context_observes(self):
        with obs.MetricsContext(obs.routing_latency) as ctx:
            pass
        assert ctx.elapsed_ms >= 0.0

    def test_track_time_decorator(self):
        @obs.track_time(obs.routing_latency)
        def work():
            return 42

        assert work() == 42

    def test_exposition(self):
        obs.tasks_submitted_total.labels(strategy="capability_match").inc()
        text = obs.metrics_collector.get_metrics().decode()

        assert "agent_router_tasks_submitted_total" in text
        assert "agent_router_uptime_seconds" in text
        assert "agent_router_system_info" in text
