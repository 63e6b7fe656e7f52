"""API module - HTTP endpoints serving metrics."""

from __future__ import annotations

from cmon_agent.api.app import create_app, serve
from cmon_agent.api.routes import create_routes

__all__ = ["create_app", "create_routes", "serve"]
