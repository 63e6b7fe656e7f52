"""cmon-agent - Host telemetry collector for zones and the global zone."""

from __future__ import annotations

from cmon_agent.core.errors import CmonAgentError, GuestNotFoundError
from cmon_agent.core.schemas import AgentConfig, CmonOptions

__version__ = "0.1.0"

__all__ = [
    "AgentConfig",
    "CmonAgentError",
    "CmonOptions",
    "GuestNotFoundError",
    "__version__",
]
