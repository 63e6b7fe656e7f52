"""FastAPI application factory and server entrypoint."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from cmon_agent import __version__
from cmon_agent.api.routes import create_routes
from cmon_agent.core.schemas import AgentConfig
from cmon_agent.engine import CollectionEngine, build_engine

logger = logging.getLogger(__name__)


def create_app(engine: CollectionEngine, config: AgentConfig | None = None) -> FastAPI:
    """Create the HTTP app around an engine.

    Args:
        engine: Engine serving every request
        config: Agent configuration, kept on ``app.state`` for handlers

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="cmon-agent", version=__version__)
    app.state.engine = engine
    app.state.config = config
    app.include_router(create_routes(engine))
    return app


def serve(config: AgentConfig) -> None:
    """Build the engine and run the app under uvicorn until interrupted."""
    import uvicorn

    engine = build_engine(config)
    app = create_app(engine, config)
    logger.info(
        f"Starting cmon-agent on {config.ip}:{config.port} "
        f"(GZ metrics owner {config.ufds_admin_uuid})"
    )
    uvicorn.run(app, host=config.ip, port=config.port, log_level=config.log_level.lower())
