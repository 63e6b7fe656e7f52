"""Collector capability interface.

Every collector is a value of the frozen ``Collector`` dataclass: a key, the
scope it applies to, the kstat queries it needs, and a pure ``produce``
function from raw records plus ancillary data to an ordered list of samples.
New collectors are added as new values, not subclasses.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum

from cmon_agent.ancillary import AncillaryData
from cmon_agent.core.errors import MissingDataError
from cmon_agent.kstat.query import KstatQuery, RawStatRecord

logger = logging.getLogger(__name__)


class MetricKind(str, Enum):
    """Prometheus metric types the agent emits."""

    COUNTER = "counter"
    GAUGE = "gauge"


class CollectorScope(str, Enum):
    """Where a collector applies.

    GZ and GUEST also name the two consumer scopes a pass produces for.
    """

    GZ = "gz"
    GUEST = "guest"
    BOTH = "both"

    def includes(self, scope: CollectorScope) -> bool:
        return self is CollectorScope.BOTH or self is scope


@dataclass(frozen=True)
class Sample:
    """One emitted metric value."""

    name: str
    kind: MetricKind
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    help: str = ""

    def with_labels(self, extra: dict[str, str]) -> Sample:
        """Return a copy with ``extra`` labels added."""
        return replace(self, labels={**self.labels, **extra})

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "value": self.value,
            "labels": dict(self.labels),
        }


ProduceFn = Callable[[Sequence[RawStatRecord], AncillaryData], list[Sample]]


@dataclass(frozen=True)
class Collector:
    """A unit producing one or more named metrics.

    Attributes:
        key: Identifier, unique within each scope
        scope: GZ only, guest only, or both
        produce: Pure function of (records, ancillary) to samples
        queries: kstat queries the collector needs; guest-scoped queries are
            templates instantiated with the guest's zone id
        metrics: Metric names the collector may emit, unique within a scope
        core_only: For guest scope, apply only to core (operator) zones
    """

    key: str
    scope: CollectorScope
    produce: ProduceFn
    queries: tuple[KstatQuery, ...] = ()
    metrics: tuple[str, ...] = ()
    core_only: bool = False

    def applies_to(self, scope: CollectorScope, core: bool = False) -> bool:
        """Check whether this collector runs for a consumer scope."""
        if not self.scope.includes(scope):
            return False
        if self.core_only and scope is CollectorScope.GUEST and not core:
            return False
        return True

    def queries_for(self, scope: CollectorScope, instance_id: int | None) -> tuple[KstatQuery, ...]:
        """Instantiate declared queries for a consumer.

        GZ queries are used as declared. Guest queries without an explicit
        instance are scoped to the guest's zone id.
        """
        if scope is CollectorScope.GZ or instance_id is None:
            return self.queries
        return tuple(q if q.instance is not None else q.for_instance(instance_id) for q in self.queries)


def counter(name: str, value: float, help: str = "", **labels: str) -> Sample:
    return Sample(name=name, kind=MetricKind.COUNTER, value=value, labels=labels, help=help)


def gauge(name: str, value: float, help: str = "", **labels: str) -> Sample:
    return Sample(name=name, kind=MetricKind.GAUGE, value=value, labels=labels, help=help)


def select(records: Sequence[RawStatRecord], module: str, kclass: str | None = None) -> list[RawStatRecord]:
    """Filter records down to one module (and optionally class)."""
    return [
        r for r in records if r.module == module and (kclass is None or r.kclass == kclass)
    ]


def require_one(records: Sequence[RawStatRecord], module: str, kclass: str | None = None) -> RawStatRecord:
    """Return the single record of a module, or raise.

    Raises:
        MissingDataError: If no record matched
    """
    matched = select(records, module, kclass)
    if not matched:
        what = f"{module}:{kclass}" if kclass else module
        raise MissingDataError(f"no {what} kstat")
    if len(matched) > 1:
        logger.debug(f"{len(matched)} {module} kstats matched, using the first")
    return matched[0]
