"""Collectors shared by the global zone and guests."""

from __future__ import annotations

from collections.abc import Sequence

from cmon_agent.ancillary import AncillaryData
from cmon_agent.collectors.base import Collector, CollectorScope, Sample, gauge
from cmon_agent.kstat.query import RawStatRecord


def produce_time(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    return [
        gauge(
            "time_of_day",
            int(ancillary.timestamp * 1000),
            "System time in milliseconds since the epoch",
        )
    ]


TIME = Collector(
    key="time",
    scope=CollectorScope.BOTH,
    produce=produce_time,
    metrics=("time_of_day",),
)

COMMON_COLLECTORS: tuple[Collector, ...] = (TIME,)
