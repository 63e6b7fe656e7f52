"""Core module - configuration, schemas and errors."""

from __future__ import annotations

from cmon_agent.core.config import decode_cmon_options, load_config, validate_config
from cmon_agent.core.constants import (
    CMON_OPTS_HEADER,
    CONTAINER_NOT_FOUND,
    EXPOSITION_CONTENT_TYPE,
    VM_UUID_LABEL,
)
from cmon_agent.core.errors import (
    AncillaryFetchError,
    CmonAgentError,
    ConfigurationError,
    GuestNotFoundError,
    KstatReadError,
    KstatUnavailableError,
    MissingDataError,
    PartialCollectionFailure,
)
from cmon_agent.core.schemas import AgentConfig, CmonOptions, CommandsConfig

__all__ = [
    "CMON_OPTS_HEADER",
    "CONTAINER_NOT_FOUND",
    "EXPOSITION_CONTENT_TYPE",
    "VM_UUID_LABEL",
    "AgentConfig",
    "AncillaryFetchError",
    "CmonAgentError",
    "CmonOptions",
    "CommandsConfig",
    "ConfigurationError",
    "GuestNotFoundError",
    "KstatReadError",
    "KstatUnavailableError",
    "MissingDataError",
    "PartialCollectionFailure",
    "decode_cmon_options",
    "load_config",
    "validate_config",
]
