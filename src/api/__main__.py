"""
Run the router API under uvicorn.

    python -m api

Configuration comes from ROUTER_* environment variables. Agents listed in
ROUTER_AGENTS_FILE (a JSON array of manifests) are registered at startup.
"""

import json
import logging
from pathlib import Path

import uvicorn

from core.config import RouterConfig
from core.log import configure_logging
from observability.tracing import setup_tracing
from routing.manifests import AgentManifest, ManifestRegistry
from service import RouterService

from .server import create_app

logger = logging.getLogger(__name__)


def load_agents(path: str) -> ManifestRegistry:
    registry = ManifestRegistry()
    for entry in json.loads(Path(path).read_text()):
        registry.register(AgentManifest.from_dict(entry))
    logger.info(f"Loaded {registry.count()} agents from {path}")
    return registry


def main():
    config = RouterConfig.from_env()
    configure_logging(config.log_level)

    if config.otlp_endpoint:
        setup_tracing(config.service_name, otlp_endpoint=config.otlp_endpoint)

    directory = load_agents(config.agents_file) if config.agents_file else ManifestRegistry()
    service = RouterService(config=config, directory=directory)

    uvicorn.run(create_app(service), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
