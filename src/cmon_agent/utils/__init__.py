"""Utils module - Shared utilities."""

from __future__ import annotations

from cmon_agent.utils.commands import CommandError, CommandNotFoundError, run_command
from cmon_agent.utils.logging import JsonFormatter, setup_logging

__all__ = ["CommandError", "CommandNotFoundError", "JsonFormatter", "run_command", "setup_logging"]
