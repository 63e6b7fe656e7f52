"""Kernel statistic sources.

A ``KstatSource`` is the sole way the agent reads kstats: one ``lookup`` is
one kernel read. ``CommandKstatSource`` uses the illumos ``kstat(1M)``
command in parseable mode, which prints one ``module:instance:name:statistic``
line per value.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from cmon_agent.core.errors import KstatReadError, KstatUnavailableError
from cmon_agent.kstat.query import KstatEntry, KstatQuery, StatValue
from cmon_agent.utils.commands import CommandError, CommandNotFoundError, run_command

logger = logging.getLogger(__name__)

# Pseudo-statistics kstat -p prints alongside the real fields.
_META_FIELDS = ("class", "snaptime", "crtime")

# kstat exits 1 when nothing matched the selectors.
_NO_MATCH_EXIT = 1


class KstatSource(ABC):
    """Read-only access to the kernel statistic namespace."""

    @abstractmethod
    def lookup(self, query: KstatQuery) -> list[KstatEntry]:
        """Read every statistic matching ``query``.

        Raises:
            KstatReadError: If this lookup failed
            KstatUnavailableError: If the interface cannot be used at all
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name of this source."""


def parse_value(text: str) -> StatValue:
    """Parse a kstat value as int, then float, else keep the string."""
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def parse_kstat_output(content: str) -> list[KstatEntry]:
    """Parse ``kstat -p`` output into entries.

    Format:
        caps:5:cpucaps_zone_5:above_sec	12
        caps:5:cpucaps_zone_5:class	zone_caps
        caps:5:cpucaps_zone_5:snaptime	8815.220462390

    Entries are returned in first-appearance order.
    """
    grouped: dict[tuple[str, int, str], dict[str, str]] = {}
    for line in content.splitlines():
        if not line.strip():
            continue
        key, sep, value = line.partition("\t")
        if not sep:
            logger.debug(f"Skipping unparseable kstat line: {line!r}")
            continue
        head, _, statistic = key.rpartition(":")
        parts = head.split(":", 2)
        if len(parts) != 3 or not statistic:
            logger.debug(f"Skipping unparseable kstat key: {key!r}")
            continue
        module, instance_text, name = parts
        try:
            instance = int(instance_text)
        except ValueError:
            logger.debug(f"Skipping kstat with non-numeric instance: {key!r}")
            continue
        grouped.setdefault((module, instance, name), {})[statistic] = value.strip()

    entries: list[KstatEntry] = []
    for (module, instance, name), fields in grouped.items():
        snaptime_text = fields.get("snaptime", "0")
        try:
            snaptime = int(round(float(snaptime_text) * 1e9))
        except ValueError:
            snaptime = 0
        data = {k: parse_value(v) for k, v in fields.items() if k not in _META_FIELDS}
        entries.append(
            KstatEntry(
                module=module,
                kclass=fields.get("class", ""),
                name=name,
                instance=instance,
                snaptime=snaptime,
                data=data,
            )
        )
    return entries


class CommandKstatSource(KstatSource):
    """KstatSource backed by the ``kstat -p`` command."""

    def __init__(self, command: Path | str = Path("/usr/bin/kstat"), timeout: float = 10.0) -> None:
        self._command = Path(command)
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "kstat_command"

    def build_argv(self, query: KstatQuery) -> list[str]:
        """Build the kstat command line selecting ``query``."""
        argv = [str(self._command), "-p", "-m", query.module]
        if query.kclass is not None:
            argv += ["-c", query.kclass]
        if query.name is not None:
            argv += ["-n", query.name]
        if query.instance is not None:
            argv += ["-i", str(query.instance)]
        return argv

    def lookup(self, query: KstatQuery) -> list[KstatEntry]:
        argv = self.build_argv(query)
        try:
            output = run_command(argv, timeout=self._timeout)
        except CommandNotFoundError as e:
            raise KstatUnavailableError(str(e)) from e
        except CommandError as e:
            if e.returncode == _NO_MATCH_EXIT:
                return []
            raise KstatReadError(str(e)) from e
        return parse_kstat_output(output)
