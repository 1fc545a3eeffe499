"""
Tests for router configuration, errors and agent-file loading
"""

import json
import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from api.__main__ import load_agents
from core.config import RouterConfig
from core.errors import InvalidRequest, NoEligibleAgent, NotFound, RateLimitExceeded, TaskFailed


class TestRouterConfig:
    def test_defaults(self):
        config = RouterConfig()
        assert config.failure_threshold == 5
        assert config.cooldown_seconds == 30.0
        assert config.max_retries == 2
        assert config.default_strategy == "capability_match"
        assert config.batch_max_items == 50
        assert config.auto_complete_experiments is False
        assert config.db_path == ":memory:"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ROUTER_FAILURE_THRESHOLD", "3")
        monkeypatch.setenv("ROUTER_COOLDOWN_SECONDS", "12.5")
        monkeypatch.setenv("ROUTER_MAX_RETRIES", "0")
        monkeypatch.setenv("ROUTER_DEFAULT_STRATEGY", "round_robin")
        monkeypatch.setenv("ROUTER_AUTO_COMPLETE_EXPERIMENTS", "TRUE")
        monkeypatch.setenv("ROUTER_DB_PATH", "/tmp/router.db")
        monkeypatch.setenv("ROUTER_PORT", "9100")
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")

        config = RouterConfig.from_env()
        assert config.failure_threshold == 3
        assert config.cooldown_seconds == 12.5
        assert config.max_retries == 0
        assert config.default_strategy == "round_robin"
        assert config.auto_complete_experiments is True
        assert config.db_path == "/tmp/router.db"
        assert config.port == 9100
        assert config.otlp_endpoint == "http://collector:4317"

    def test_from_env_without_overrides(self, monkeypatch):
        for name in ("ROUTER_FAILURE_THRESHOLD", "ROUTER_AGENTS_FILE", "OTEL_EXPORTER_OTLP_ENDPOINT"):
            monkeypatch.delenv(name, raising=False)
        config = RouterConfig.from_env()
        assert config.failure_threshold == 5
        assert config.agents_file is None
        assert config.otlp_endpoint is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"failure_threshold": 0},
            {"max_retries": -1},
            {"dispatch_timeout_seconds": 0},
            {"batch_max_items": 0},
        ],
    )
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RouterConfig(**kwargs)


class TestErrors:
    def test_invalid_request_payload(self):
        assert InvalidRequest("bad template", field="template").to_dict() == {
            "error": "invalid_request",
            "message": "bad template",
            "field": "template",
        }

    def test_no_eligible_agent_payload(self):
        payload = NoEligibleAgent(["code_generation"], "round_robin").to_dict()
        assert payload["capabilities"] == ["code_generation"]
        assert payload["strategy"] == "round_robin"

    def test_task_failed_names_cause(self):
        error = TaskFailed("t1", NotFound("agent", "a1"))
        assert error.to_dict()["cause"] == "not_found"
        assert TaskFailed("t1", RuntimeError("x")).to_dict()["cause"] == "RuntimeError"

    def test_not_found_message(self):
        assert str(NotFound("task", "t1")) == "task not found: t1"

    def test_rate_limit_payload(self):
        assert RateLimitExceeded("tenant", 12.5).to_dict()["retry_after"] == 12.5


class TestLoadAgents:
    def test_loads_manifests(self, tmp_path):
        path = tmp_path / "agents.json"
        path.write_text(
            json.dumps(
                [
                    {"agent_id": "writer", "capabilities": ["text_generation"], "endpoint": "http://writer/run"},
                    {"agent_id": "coder", "capabilities": ["code_generation"], "cost_per_call": 0.01},
                ]
            )
        )

        registry = load_agents(str(path))
        assert registry.count() == 2
        assert registry.get("writer").endpoint == "http://writer/run"
        assert registry.get("coder").cost_per_call == 0.01
