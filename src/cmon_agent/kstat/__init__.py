"""kstat module - Kernel statistic queries, sources and the batched reader."""

from __future__ import annotations

from cmon_agent.kstat.query import KstatEntry, KstatQuery, RawStatRecord, StatValue
from cmon_agent.kstat.reader import KstatReader, compute_deltas
from cmon_agent.kstat.source import CommandKstatSource, KstatSource, parse_kstat_output

__all__ = [
    "CommandKstatSource",
    "KstatEntry",
    "KstatQuery",
    "KstatReader",
    "KstatSource",
    "RawStatRecord",
    "StatValue",
    "compute_deltas",
    "parse_kstat_output",
]
