"""Snapshot formatters.

Two renderings of one collection pass:
- format_exposition: Prometheus text format 0.0.4, what scrapers consume
- format_snapshot_json: nested document of raw records and ancillary data,
  for diagnostics and the snapshot CLI
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal

from cmon_agent.collectors.base import MetricKind, Sample
from cmon_agent.engine import Snapshot


@dataclass
class _Family:
    name: str
    kind: MetricKind
    help: str
    samples: list[Sample] = field(default_factory=list)


def format_value(value: float) -> str | None:
    """Render a sample value as a plain decimal, or None if it is not finite.

    ``repr`` gives the shortest round-tripping form; formatting it through
    Decimal with ``f`` expands any exponent.
    """
    if isinstance(value, bool):
        value = int(value)
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        return None
    return format(Decimal(repr(value)), "f")


def escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def format_labels(labels: dict[str, str]) -> str:
    if not labels:
        return ""
    pairs = ",".join(f'{k}="{escape_label_value(str(labels[k]))}"' for k in sorted(labels))
    return "{" + pairs + "}"


def ordered_samples(snapshot: Snapshot) -> list[Sample]:
    """All samples of a pass: GZ first, then guests in UUID order."""
    samples: list[Sample] = []
    if snapshot.gz is not None:
        samples.extend(snapshot.gz.samples)
    for vm_uuid in sorted(snapshot.guests):
        samples.extend(snapshot.guests[vm_uuid].samples)
    return samples


def _group(samples: Iterable[Sample]) -> list[_Family]:
    families: dict[str, _Family] = {}
    for sample in samples:
        family = families.get(sample.name)
        if family is None:
            family = families[sample.name] = _Family(sample.name, sample.kind, sample.help)
        family.samples.append(sample)
    return list(families.values())


def format_samples(samples: Iterable[Sample]) -> bytes:
    """Render samples as exposition text.

    Samples of one metric are grouped under a single HELP/TYPE header, in
    order of first appearance. Non-finite values are omitted, and a metric
    with no finite values is omitted entirely.
    """
    lines: list[str] = []
    for family in _group(samples):
        rendered = []
        for sample in family.samples:
            value = format_value(sample.value)
            if value is None:
                continue
            rendered.append(f"{family.name}{format_labels(sample.labels)} {value}")
        if not rendered:
            continue
        if family.help:
            lines.append(f"# HELP {family.name} {escape_help(family.help)}")
        lines.append(f"# TYPE {family.name} {family.kind.value}")
        lines.extend(rendered)
    if not lines:
        return b""
    return ("\n".join(lines) + "\n").encode("utf-8")


def format_exposition(snapshot: Snapshot) -> bytes:
    """Render a snapshot in Prometheus text exposition format.

    Output is byte-identical for identical sample input.
    """
    return format_samples(ordered_samples(snapshot))


def format_snapshot_json(snapshot: Snapshot) -> dict[str, object]:
    """Render a snapshot's raw data as a JSON-serializable document.

    Keys other than ``timestamp`` appear only when non-empty:
    - ``kstats``: every raw record read in the pass, once each
    - ``vms``: per guest, its zone id, filesystem usage, raw records,
      resolution error and collector failures; every requested guest is
      listed even when it produced no samples
    - ``ntp``: the NTP peer table

    Example:
        ```python
        doc = format_snapshot_json(snapshot)
        print(json.dumps(doc, indent=2))
        ```
    """
    doc: dict[str, object] = {"timestamp": snapshot.timestamp}

    kstats = [r.to_dict() for r in snapshot.records]
    if kstats:
        doc["kstats"] = kstats

    vms: dict[str, object] = {}
    for vm_uuid in sorted(snapshot.guests):
        context = snapshot.guests[vm_uuid]
        entry: dict[str, object] = {"instance": context.instance_id}
        if context.ancillary is not None and context.ancillary.filesystem is not None:
            entry["zfs"] = context.ancillary.filesystem.to_dict()
        entry["kstats"] = [r.to_dict() for r in context.records]
        if context.error is not None:
            entry["error"] = context.error
        failures = dict(context.failures)
        if context.ancillary is not None:
            failures.update({f"ancillary/{k}": v for k, v in context.ancillary.errors.items()})
        if failures:
            entry["failures"] = failures
        vms[vm_uuid] = entry
    if vms:
        doc["vms"] = vms

    if snapshot.gz is not None and snapshot.gz.ancillary.ntp is not None:
        doc["ntp"] = snapshot.gz.ancillary.ntp.to_dict()

    return doc
