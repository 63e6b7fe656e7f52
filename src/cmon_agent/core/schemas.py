"""Pydantic schemas for the cmon agent.

This module defines the data contracts read from outside the process:
the agent configuration file and the per-request collection options header.
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL")


class CommandsConfig(BaseModel):
    """Paths of the host commands the agent shells out to."""

    kstat: Path = Field(default=Path("/usr/bin/kstat"))
    zoneadm: Path = Field(default=Path("/usr/sbin/zoneadm"))
    zfs: Path = Field(default=Path("/usr/sbin/zfs"))
    ntpq: Path = Field(default=Path("/usr/sbin/ntpq"))

    model_config = ConfigDict(extra="forbid")


class AgentConfig(BaseModel):
    """Top-level agent configuration.

    Attributes:
        log_level: Logging level name
        port: TCP port the HTTP app listens on
        ip: Address the HTTP app binds to
        ufds_admin_uuid: Owner of the global zone metrics
        max_concurrency: Upper bound on concurrent per-guest tasks in a pass
        zfs_pool: Pool holding each guest's dataset
        command_timeout_seconds: Timeout for every external command
        commands: Paths of the external commands
    """

    log_level: str = Field(..., description="Logging level")
    port: int = Field(..., ge=1, le=65535, description="HTTP listen port")
    ip: str = Field(default="0.0.0.0", min_length=1, description="HTTP bind address")
    ufds_admin_uuid: UUID = Field(..., description="Owner of global zone metrics")
    max_concurrency: int = Field(default=16, ge=1, le=1024)
    zfs_pool: str = Field(default="zones", min_length=1)
    command_timeout_seconds: float = Field(default=10.0, gt=0)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)

    model_config = ConfigDict(extra="forbid")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}, expected one of {', '.join(LOG_LEVELS)}")
        # logging has no FATAL handler level distinct from CRITICAL
        return "CRITICAL" if level == "FATAL" else level


class CmonOptions(BaseModel):
    """Options decoded from the ``x-joyent-cmon-opts`` request header."""

    is_core_zone: bool = Field(default=False, alias="isCoreZone", strict=True)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
