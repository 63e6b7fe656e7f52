"""The process-wide collector registry.

Built once at startup and read-only afterwards. Construction validates that
collector keys and metric names are unique within each scope, so a pass
never has to deduplicate samples.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from cmon_agent.ancillary import AncillaryData
from cmon_agent.collectors.base import Collector, CollectorScope, Sample
from cmon_agent.collectors.common import COMMON_COLLECTORS
from cmon_agent.collectors.gz import GZ_COLLECTORS
from cmon_agent.collectors.vm import VM_COLLECTORS
from cmon_agent.core.errors import ConfigurationError, MissingDataError
from cmon_agent.kstat.query import KstatQuery, RawStatRecord

logger = logging.getLogger(__name__)

CONSUMER_SCOPES = (CollectorScope.GZ, CollectorScope.GUEST)


@dataclass
class ProductionResult:
    """Samples produced for one consumer, plus per-collector failures."""

    samples: list[Sample] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


class CollectorRegistry:
    """Fixed set of collectors partitioned by scope.

    Example:
        ```python
        registry = build_default_registry()
        queries = registry.queries_for(CollectorScope.GUEST, instance_id=5)
        result = registry.produce_for(CollectorScope.GUEST, records, ancillary, instance_id=5)
        ```
    """

    def __init__(self, collectors: Iterable[Collector]) -> None:
        self._collectors = tuple(collectors)
        self._validate()

    def _validate(self) -> None:
        for scope in CONSUMER_SCOPES:
            keys: set[str] = set()
            metrics: dict[str, str] = {}
            for collector in self._collectors:
                if not collector.scope.includes(scope):
                    continue
                if collector.key in keys:
                    raise ConfigurationError(
                        f"duplicate collector key {collector.key!r} in {scope.value} scope"
                    )
                keys.add(collector.key)
                for metric in collector.metrics:
                    owner = metrics.get(metric)
                    if owner is not None:
                        raise ConfigurationError(
                            f"metric {metric!r} declared by both {owner!r} and "
                            f"{collector.key!r} in {scope.value} scope"
                        )
                    metrics[metric] = collector.key

    @property
    def collectors(self) -> tuple[Collector, ...]:
        return self._collectors

    def active(self, scope: CollectorScope, core: bool = False) -> list[Collector]:
        """Collectors running for a consumer scope, in registration order."""
        if scope not in CONSUMER_SCOPES:
            raise ValueError(f"not a consumer scope: {scope}")
        return [c for c in self._collectors if c.applies_to(scope, core)]

    def queries_for(
        self, scope: CollectorScope, instance_id: int | None = None, core: bool = False
    ) -> list[KstatQuery]:
        """Union of declared queries for a consumer, deduplicated in registration order.

        Args:
            scope: GZ or GUEST
            instance_id: Guest zone id; required for GUEST scope
            core: Whether the guest is a core zone
        """
        if scope is CollectorScope.GUEST and instance_id is None:
            raise ValueError("guest queries need an instance id")
        queries: dict[KstatQuery, None] = {}
        for collector in self.active(scope, core):
            for query in collector.queries_for(scope, instance_id):
                queries.setdefault(query, None)
        return list(queries)

    def produce_for(
        self,
        scope: CollectorScope,
        records: Sequence[RawStatRecord],
        ancillary: AncillaryData,
        labels: dict[str, str] | None = None,
        core: bool = False,
        instance_id: int | None = None,
    ) -> ProductionResult:
        """Run every active collector over a consumer's records.

        Each collector only sees records answering its own queries. A
        collector that raises is recorded in ``failures`` and contributes no
        samples; its siblings still run.

        Args:
            scope: GZ or GUEST
            records: Records read for this consumer
            ancillary: Non-kstat data for this consumer
            labels: Labels added to every produced sample
            core: Whether the guest is a core zone
            instance_id: Guest zone id, used to match instantiated queries
        """
        result = ProductionResult()
        for collector in self.active(scope, core):
            wanted = set(collector.queries_for(scope, instance_id))
            own = [r for r in records if r.query in wanted]
            try:
                samples = collector.produce(own, ancillary)
            except MissingDataError as e:
                result.failures[collector.key] = str(e)
                logger.warning(f"Collector {collector.key} produced no samples: {e}")
                continue
            except Exception as e:
                result.failures[collector.key] = f"{type(e).__name__}: {e}"
                logger.warning(f"Collector {collector.key} failed: {e}", exc_info=True)
                continue
            if labels:
                samples = [s.with_labels(labels) for s in samples]
            result.samples.extend(samples)
        return result


def build_default_registry() -> CollectorRegistry:
    """Build the registry of every built-in collector."""
    return CollectorRegistry(GZ_COLLECTORS + VM_COLLECTORS + COMMON_COLLECTORS)
