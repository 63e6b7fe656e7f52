"""Ancillary (non-kstat) data sources.

Some collectors need data outside the kstat namespace: each guest's
filesystem usage and the host's NTP peer state. Both are fetched through
dedicated host commands and handed to collectors in an ``AncillaryData``
bundle alongside the raw kstat records.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from cmon_agent.core.errors import AncillaryFetchError
from cmon_agent.utils.commands import CommandError, run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilesystemUsage:
    """Space accounting for one guest's dataset, in bytes."""

    dataset: str
    used: int
    available: int

    def to_dict(self) -> dict[str, int | str]:
        return {"dataset": self.dataset, "used": self.used, "available": self.available}


@dataclass(frozen=True)
class NtpPeer:
    """One row of the ntpq peer table.

    Times are in seconds (ntpq reports milliseconds).
    """

    remote: str
    tally: str  # selection character: '*' system peer, '+' candidate, ...
    refid: str
    stratum: int
    peer_type: str
    when: int | None
    poll: int
    reach: int  # octal reachability register, as an integer
    delay: float
    offset: float
    jitter: float

    @property
    def selected(self) -> bool:
        return self.tally == "*"

    def to_dict(self) -> dict[str, object]:
        return {
            "remote": self.remote,
            "tally": self.tally,
            "refid": self.refid,
            "stratum": self.stratum,
            "type": self.peer_type,
            "when": self.when,
            "poll": self.poll,
            "reach": self.reach,
            "delay": self.delay,
            "offset": self.offset,
            "jitter": self.jitter,
        }


@dataclass(frozen=True)
class NtpStatus:
    """The host's NTP peer table."""

    peers: tuple[NtpPeer, ...] = ()

    @property
    def synchronized(self) -> bool:
        return any(p.selected for p in self.peers)

    def to_dict(self) -> dict[str, object]:
        return {
            "synchronized": self.synchronized,
            "peers": [p.to_dict() for p in self.peers],
        }


@dataclass
class AncillaryData:
    """Non-kstat inputs for one consumer (the GZ or one guest) in one pass.

    Attributes:
        timestamp: Wall-clock time of the pass, seconds since the epoch
        filesystem: Guest dataset usage, None if not applicable or failed
        ntp: NTP state, None if not applicable or failed
        errors: Fetch failures keyed by ancillary source name
    """

    timestamp: float
    filesystem: FilesystemUsage | None = None
    ntp: NtpStatus | None = None
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {}
        if self.filesystem is not None:
            result["zfs"] = self.filesystem.to_dict()
        if self.ntp is not None:
            result["ntp"] = self.ntp.to_dict()
        if self.errors:
            result["errors"] = dict(self.errors)
        return result


class FilesystemSource(ABC):
    """Reports filesystem usage for a guest."""

    @abstractmethod
    def usage(self, vm_uuid: str) -> FilesystemUsage:
        """Return usage of the guest's dataset.

        Raises:
            AncillaryFetchError: If usage could not be read
        """


class NtpSource(ABC):
    """Reports the host's NTP state."""

    @abstractmethod
    def status(self) -> NtpStatus:
        """Return the current peer table.

        Raises:
            AncillaryFetchError: If the peer table could not be read
        """


def parse_zfs_usage(dataset: str, content: str) -> FilesystemUsage:
    """Parse ``zfs list -Hp -o used,available`` output for one dataset.

    Raises:
        AncillaryFetchError: If the output is not two integer columns
    """
    lines = [line for line in content.splitlines() if line.strip()]
    if len(lines) != 1:
        raise AncillaryFetchError(f"expected one line of zfs output for {dataset}, got {len(lines)}")
    parts = lines[0].split()
    if len(parts) != 2:
        raise AncillaryFetchError(f"unexpected zfs output for {dataset}: {lines[0]!r}")
    try:
        used, available = int(parts[0]), int(parts[1])
    except ValueError as e:
        raise AncillaryFetchError(f"non-numeric zfs output for {dataset}: {lines[0]!r}") from e
    return FilesystemUsage(dataset=dataset, used=used, available=available)


_NTPQ_ROW = re.compile(r"^([ x.\-+#*o])(\S+)\s+(.*)$")


def parse_ntpq_peers(content: str) -> NtpStatus:
    """Parse ``ntpq -pn`` output.

    Format:
             remote           refid      st t when poll reach   delay   offset  jitter
        ==============================================================================
        *10.0.0.1        .GPS.            1 u   33   64  377    0.412   -0.027   0.013
        +10.0.0.2        10.0.0.1         2 u   12   64  377    0.520    0.101   0.044

    ``when`` may be ``-`` for peers never heard from. Rows that cannot be
    parsed are skipped.
    """
    peers: list[NtpPeer] = []
    in_table = False
    for line in content.splitlines():
        if line.startswith("==="):
            in_table = True
            continue
        if not in_table or not line.strip():
            continue
        match = _NTPQ_ROW.match(line)
        if match is None:
            logger.debug(f"Skipping unparseable ntpq row: {line!r}")
            continue
        tally, remote, rest = match.groups()
        cols = rest.split()
        if len(cols) != 9:
            logger.debug(f"Skipping ntpq row with {len(cols)} columns: {line!r}")
            continue
        refid, stratum, peer_type, when, poll, reach, delay, offset, jitter = cols
        try:
            peers.append(
                NtpPeer(
                    remote=remote,
                    tally=tally.strip() or " ",
                    refid=refid,
                    stratum=int(stratum),
                    peer_type=peer_type,
                    when=None if when == "-" else _parse_when(when),
                    poll=_parse_when(poll),
                    reach=int(reach, 8),
                    delay=float(delay) / 1000.0,
                    offset=float(offset) / 1000.0,
                    jitter=float(jitter) / 1000.0,
                )
            )
        except ValueError:
            logger.debug(f"Skipping ntpq row with bad values: {line!r}")
    return NtpStatus(peers=tuple(peers))


def _parse_when(text: str) -> int:
    """Parse ntpq time columns, which abbreviate large values (``17m``, ``2h``, ``3d``)."""
    multipliers = {"m": 60, "h": 3600, "d": 86400}
    if text and text[-1] in multipliers:
        return int(text[:-1]) * multipliers[text[-1]]
    return int(text)


class ZfsFilesystemSource(FilesystemSource):
    """Reads guest dataset usage with ``zfs list``."""

    def __init__(
        self, command: Path | str = Path("/usr/sbin/zfs"), pool: str = "zones", timeout: float = 10.0
    ) -> None:
        self._command = Path(command)
        self._pool = pool
        self._timeout = timeout

    def usage(self, vm_uuid: str) -> FilesystemUsage:
        dataset = f"{self._pool}/{vm_uuid}"
        argv = [self._command, "list", "-Hp", "-o", "used,available", dataset]
        try:
            output = run_command(argv, timeout=self._timeout)
        except CommandError as e:
            raise AncillaryFetchError(str(e)) from e
        return parse_zfs_usage(dataset, output)


class NtpqSource(NtpSource):
    """Reads the NTP peer table with ``ntpq -pn``."""

    def __init__(self, command: Path | str = Path("/usr/sbin/ntpq"), timeout: float = 10.0) -> None:
        self._command = Path(command)
        self._timeout = timeout

    def status(self) -> NtpStatus:
        try:
            output = run_command([self._command, "-pn"], timeout=self._timeout)
        except CommandError as e:
            raise AncillaryFetchError(str(e)) from e
        return parse_ntpq_peers(output)
