"""Collectors module - Metric-producing collectors and their registry.

Provides:
- Collector: the capability every collector value implements
- CollectorRegistry: the fixed, scope-partitioned set of collectors
- GZ_COLLECTORS / VM_COLLECTORS / COMMON_COLLECTORS: built-in collectors
"""

from __future__ import annotations

from cmon_agent.collectors.base import (
    Collector,
    CollectorScope,
    MetricKind,
    Sample,
    counter,
    gauge,
)
from cmon_agent.collectors.common import COMMON_COLLECTORS
from cmon_agent.collectors.gz import GZ_COLLECTORS
from cmon_agent.collectors.registry import (
    CollectorRegistry,
    ProductionResult,
    build_default_registry,
)
from cmon_agent.collectors.vm import VM_COLLECTORS

__all__ = [
    "COMMON_COLLECTORS",
    "GZ_COLLECTORS",
    "VM_COLLECTORS",
    "Collector",
    "CollectorRegistry",
    "CollectorScope",
    "MetricKind",
    "ProductionResult",
    "Sample",
    "build_default_registry",
    "counter",
    "gauge",
]
