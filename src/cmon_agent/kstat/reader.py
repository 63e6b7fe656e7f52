"""Batched kstat reader with delta tracking.

The reader is the only component that talks to a ``KstatSource``. Each pass
submits every query it needs at once; duplicates are collapsed so that the
number of kernel reads equals the number of distinct query signatures.

For delta-flagged queries the reader keeps the previous numeric values and
snaptime of every matched statistic and reports per-second rates. The first
read of a statistic has no prior state and reports ``deltas=None`` ("no data
yet") rather than a fabricated zero. A field whose counter went backwards is
treated as a kernel-side reset and left out of that interval's deltas.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from cmon_agent.core.constants import NANOSEC
from cmon_agent.core.errors import KstatReadError
from cmon_agent.kstat.query import KstatEntry, KstatQuery, RawStatRecord, StatValue
from cmon_agent.kstat.source import KstatSource

logger = logging.getLogger(__name__)

DeltaKey = tuple[KstatQuery, tuple[str, str, str, int]]


@dataclass
class _DeltaState:
    snaptime: int
    values: dict[str, int | float]


def _numeric_fields(data: dict[str, StatValue]) -> dict[str, int | float]:
    return {
        k: v for k, v in data.items() if isinstance(v, (int, float)) and not isinstance(v, bool)
    }


def compute_deltas(
    previous: _DeltaState | None, snaptime: int, values: dict[str, int | float]
) -> dict[str, float] | None:
    """Compute per-field rates between two reads of one statistic.

    Args:
        previous: State retained from the last read, or None on the first read
        snaptime: Read timestamp in nanoseconds
        values: Current numeric field values

    Returns:
        None on the first read. Otherwise a mapping of field to rate per
        second, or the flat delta when no time elapsed between reads. Fields
        that decreased (wraparound/reset) or are new are omitted.
    """
    if previous is None:
        return None

    elapsed_ns = snaptime - previous.snaptime
    if elapsed_ns < 0:
        # Statistic was recreated; nothing from the old incarnation is comparable.
        return {}

    deltas: dict[str, float] = {}
    for key, current in values.items():
        prior = previous.values.get(key)
        if prior is None:
            continue
        diff = current - prior
        if diff < 0:
            continue
        deltas[key] = diff / (elapsed_ns / NANOSEC) if elapsed_ns > 0 else float(diff)
    return deltas


class KstatReader:
    """Executes deduplicated kstat queries against a source.

    A single lock serializes whole reads: passes are infrequent, and it keeps
    each statistic's retained previous value consistent across concurrent
    collection passes.

    Example:
        ```python
        reader = KstatReader(CommandKstatSource())
        records = reader.read([KstatQuery("unix", "misc", "system_misc", 0)])
        ```
    """

    def __init__(self, source: KstatSource) -> None:
        self._source = source
        self._lock = threading.Lock()
        self._previous: dict[DeltaKey, _DeltaState] = {}

    @property
    def source(self) -> KstatSource:
        return self._source

    def read(self, queries: Iterable[KstatQuery]) -> list[RawStatRecord]:
        """Read every distinct query once and return all matching records.

        Records are returned grouped by query, in first-submission order.
        A failing query is logged and contributes no records.

        Raises:
            KstatUnavailableError: If the kstat interface is unusable
        """
        submitted = list(queries)
        unique = list(dict.fromkeys(submitted))
        records: list[RawStatRecord] = []
        failed = 0

        with self._lock:
            for query in unique:
                try:
                    entries = self._source.lookup(query)
                except KstatReadError as e:
                    failed += 1
                    logger.warning(f"kstat read failed for {query}: {e}")
                    continue
                for entry in entries:
                    if not query.matches(entry):
                        logger.debug(f"Dropping {entry.identity} returned for {query}")
                        continue
                    records.append(self._to_record(query, entry))

        logger.debug(
            f"kstat pass: {len(submitted)} queries submitted, {len(unique)} distinct, "
            f"{failed} failed, {len(records)} records"
        )
        return records

    def _to_record(self, query: KstatQuery, entry: KstatEntry) -> RawStatRecord:
        deltas = None
        interval = None
        if query.delta:
            key: DeltaKey = (query, entry.identity)
            values = _numeric_fields(entry.data)
            previous = self._previous.get(key)
            deltas = compute_deltas(previous, entry.snaptime, values)
            if previous is not None:
                interval = (entry.snaptime - previous.snaptime) / NANOSEC
            self._previous[key] = _DeltaState(snaptime=entry.snaptime, values=values)
        return RawStatRecord(
            module=entry.module,
            kclass=entry.kclass,
            name=entry.name,
            instance=entry.instance,
            snaptime=entry.snaptime,
            data=dict(entry.data),
            query=query,
            deltas=deltas,
            interval=interval,
        )

    def reset(self) -> None:
        """Forget all retained delta state."""
        with self._lock:
            self._previous.clear()
