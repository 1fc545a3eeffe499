"""
Router Configuration

Tunables for routing, health tracking, dispatch, evaluation and experiments.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class RouterConfig:
    """
    Router configuration settings.

    Attributes:
        failure_threshold: Consecutive failures before an agent's circuit opens
        failure_window_seconds: Window in which consecutive failures must fall
        cooldown_seconds: Time an open circuit waits before going half-open
        max_retries: Dispatch retries after the first attempt
        dispatch_timeout_seconds: Timeout for a single dispatch attempt
        default_strategy: Strategy used when a task names none
        batch_max_items: Maximum items accepted by a batch evaluation
        auto_complete_experiments: If True, reading results that show a winner
            moves the experiment to completed. If False, only stop() ends it.
        rate_limit_per_tenant: Task submissions allowed per tenant per window
        rate_limit_window_seconds: Rate limiting window
        agent_cache_ttl_seconds: How long cached agent data is trusted
        db_path: SQLite database path (":memory:" for ephemeral state)
        agents_file: JSON file of agent manifests loaded at startup
        host: Interface the HTTP API binds to
        port: Port the HTTP API listens on
    """

    failure_threshold: int = 5
    failure_window_seconds: float = 60.0
    cooldown_seconds: float = 30.0
    max_retries: int = 2
    dispatch_timeout_seconds: float = 30.0
    default_strategy: str = "capability_match"
    batch_max_items: int = 50
    auto_complete_experiments: bool = False
    rate_limit_per_tenant: int = 100
    rate_limit_window_seconds: int = 60
    agent_cache_ttl_seconds: float = 30.0
    db_path: str = ":memory:"
    log_level: str = "INFO"
    service_name: str = "agent-task-router"
    otlp_endpoint: Optional[str] = None
    agents_file: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.dispatch_timeout_seconds <= 0:
            raise ValueError("dispatch_timeout_seconds must be positive")
        if self.batch_max_items < 1:
            raise ValueError("batch_max_items must be at least 1")

    @classmethod
    def from_env(cls) -> "RouterConfig":
        """Create config from environment variables"""
        return cls(
            failure_threshold=int(os.getenv("ROUTER_FAILURE_THRESHOLD", "5")),
            failure_window_seconds=float(os.getenv("ROUTER_FAILURE_WINDOW_SECONDS", "60.0")),
            cooldown_seconds=float(os.getenv("ROUTER_COOLDOWN_SECONDS", "30.0")),
            max_retries=int(os.getenv("ROUTER_MAX_RETRIES", "2")),
            dispatch_timeout_seconds=float(os.getenv("ROUTER_DISPATCH_TIMEOUT_SECONDS", "30.0")),
            default_strategy=os.getenv("ROUTER_DEFAULT_STRATEGY", "capability_match"),
            batch_max_items=int(os.getenv("ROUTER_BATCH_MAX_ITEMS", "50")),
            auto_complete_experiments=_env_bool("ROUTER_AUTO_COMPLETE_EXPERIMENTS", "false"),
            rate_limit_per_tenant=int(os.getenv("ROUTER_RATE_LIMIT_PER_TENANT", "100")),
            rate_limit_window_seconds=int(os.getenv("ROUTER_RATE_LIMIT_WINDOW_SECONDS", "60")),
            agent_cache_ttl_seconds=float(os.getenv("ROUTER_AGENT_CACHE_TTL_SECONDS", "30.0")),
            db_path=os.getenv("ROUTER_DB_PATH", ":memory:"),
            log_level=os.getenv("ROUTER_LOG_LEVEL", "INFO"),
            service_name=os.getenv("ROUTER_SERVICE_NAME", "agent-task-router"),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"),
            agents_file=os.getenv("ROUTER_AGENTS_FILE"),
            host=os.getenv("ROUTER_HOST", "0.0.0.0"),
            port=int(os.getenv("ROUTER_PORT", "8000")),
        )
