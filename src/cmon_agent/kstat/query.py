"""Kernel statistic query and record types.

A ``KstatQuery`` describes which kstats a collector wants, scoped to an
instance. Queries are frozen: equality over all fields is the signature the
reader deduplicates on, so two collectors asking for the same statistics
share one kernel read.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

StatValue = int | float | str


@dataclass(frozen=True)
class KstatQuery:
    """Which kernel statistic(s) to read.

    ``None`` for ``kclass``, ``name`` or ``instance`` matches any value.
    Guest collectors declare templates with ``instance=None`` which the
    registry instantiates with the guest's zone id.
    """

    module: str
    kclass: str | None = None
    name: str | None = None
    instance: int | None = None
    delta: bool = False

    def for_instance(self, instance: int) -> KstatQuery:
        """Return a copy of this query scoped to ``instance``.

        Some kstats embed the zone id in their name (``cpucaps_zone_<id>``), so
        an ``{instance}`` placeholder in the name is expanded as well.
        """
        name = self.name.format(instance=instance) if self.name is not None else None
        return replace(self, name=name, instance=instance)

    def matches(self, record: KstatEntry | RawStatRecord) -> bool:
        """Check whether an entry or record satisfies this query."""
        return (
            record.module == self.module
            and (self.kclass is None or record.kclass == self.kclass)
            and (self.name is None or record.name == self.name)
            and (self.instance is None or record.instance == self.instance)
        )

    def __str__(self) -> str:
        parts = [
            self.module,
            "*" if self.instance is None else str(self.instance),
            self.name or "*",
        ]
        text = ":".join(parts)
        if self.kclass is not None:
            text += f" class={self.kclass}"
        if self.delta:
            text += " delta"
        return text


@dataclass(frozen=True)
class KstatEntry:
    """One statistic as returned by a KstatSource, before delta handling."""

    module: str
    kclass: str
    name: str
    instance: int
    snaptime: int  # nanoseconds, kernel high-resolution time
    data: dict[str, StatValue] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str, str, int]:
        """The (module, class, name, instance) tuple naming this statistic."""
        return (self.module, self.kclass, self.name, self.instance)


@dataclass(frozen=True)
class RawStatRecord:
    """The kernel's answer to one matched statistic for one read pass.

    Attributes:
        query: The query this record answered
        deltas: For delta queries, per-field rate (or flat delta) since the
            previous read. ``None`` means no data yet (first read of this
            statistic). Fields that wrapped around are absent.
        interval: Seconds between the previous read and this one, or None
            when there was no previous read
    """

    module: str
    kclass: str
    name: str
    instance: int
    snaptime: int
    data: dict[str, StatValue]
    query: KstatQuery
    deltas: dict[str, float] | None = None
    interval: float | None = None

    @property
    def has_deltas(self) -> bool:
        return self.deltas is not None

    @property
    def has_rates(self) -> bool:
        """Whether ``deltas`` are per-second rates over a positive interval."""
        return self.deltas is not None and self.interval is not None and self.interval > 0

    def get_int(self, key: str) -> int:
        """Return a numeric field as int.

        Raises:
            KeyError: If the field is absent
            TypeError: If the field is not numeric
        """
        value = self.data[key]
        if isinstance(value, str):
            raise TypeError(f"{self.module}:{self.instance}:{self.name}:{key} is not numeric")
        return int(value)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for snapshot serialization."""
        result: dict[str, object] = {
            "module": self.module,
            "class": self.kclass,
            "name": self.name,
            "instance": self.instance,
            "snaptime": self.snaptime,
            "data": dict(self.data),
        }
        if self.query.delta:
            result["deltas"] = dict(self.deltas) if self.deltas is not None else None
        return result
