"""Exception hierarchy for the cmon agent.

Failures local to a single guest, query or collector are recorded and never
abort a collection pass. Only ``KstatUnavailableError`` and
``ConfigurationError`` are fatal.
"""

from __future__ import annotations


class CmonAgentError(Exception):
    """Base class for all agent errors."""


class ConfigurationError(CmonAgentError):
    """Malformed startup input. The process does not start serving."""


class GuestNotFoundError(CmonAgentError):
    """A guest UUID could not be resolved to a running instance."""

    def __init__(self, vm_uuid: str) -> None:
        super().__init__(f"guest {vm_uuid} not found")
        self.vm_uuid = vm_uuid


class KstatReadError(CmonAgentError):
    """One kernel statistic lookup failed. Isolated to that query."""


class KstatUnavailableError(CmonAgentError):
    """The kernel statistic interface cannot be used at all."""


class AncillaryFetchError(CmonAgentError):
    """Filesystem usage or NTP state could not be fetched."""


class MissingDataError(CmonAgentError):
    """A collector's required record or ancillary data is absent."""


class PartialCollectionFailure(CmonAgentError):
    """Summary of per-guest or per-collector failures within one pass.

    Never raised out of the engine; built for callers that want to surface
    a pass's recorded failures as a single exception.
    """

    def __init__(self, failures: dict[str, str]) -> None:
        summary = ", ".join(f"{key}: {msg}" for key, msg in sorted(failures.items()))
        super().__init__(f"partial collection failure ({summary})")
        self.failures = failures
