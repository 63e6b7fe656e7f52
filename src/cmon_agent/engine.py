"""Collection engine.

One collection pass runs as an ordered pipeline:

1. resolve: enumerate (or take) guest UUIDs and resolve each to a zone id
2. ancillary: fetch filesystem usage per guest and NTP state for the GZ
3. queries: gather every consumer's kstat queries
4. read: one KstatReader.read over the deduplicated query set
5. produce: hand each consumer its records and run its collectors

Per-guest stages fan out as tasks behind a semaphore and join with
``asyncio.gather(..., return_exceptions=True)``, so one guest's failure never
cancels its siblings. The read stage starts only after every query set is
known and is issued exactly once per pass.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from cmon_agent.ancillary import (
    AncillaryData,
    FilesystemSource,
    NtpqSource,
    NtpSource,
    ZfsFilesystemSource,
)
from cmon_agent.collectors.base import CollectorScope, Sample
from cmon_agent.collectors.registry import CollectorRegistry, build_default_registry
from cmon_agent.core.constants import VM_UUID_LABEL
from cmon_agent.core.errors import GuestNotFoundError, PartialCollectionFailure
from cmon_agent.core.schemas import AgentConfig, CommandsConfig
from cmon_agent.inventory import GuestInventory, InstanceResolver, ZoneadmInventory
from cmon_agent.kstat.query import KstatQuery, RawStatRecord
from cmon_agent.kstat.reader import KstatReader
from cmon_agent.kstat.source import CommandKstatSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CollectionRequest:
    """Scope of one collection pass.

    Attributes:
        include_gz: Collect global zone metrics
        guest_uuids: Guests to collect; None means every running guest
        core: Treat the requested guests as core zones
    """

    include_gz: bool = False
    guest_uuids: frozenset[str] | None = frozenset()
    core: bool = False

    def __post_init__(self) -> None:
        if not self.include_gz and self.guest_uuids is not None and not self.guest_uuids:
            raise ValueError("a collection request needs the GZ or at least one guest")

    @classmethod
    def for_gz(cls) -> CollectionRequest:
        return cls(include_gz=True)

    @classmethod
    def for_guest(cls, vm_uuid: str, core: bool = False) -> CollectionRequest:
        return cls(guest_uuids=frozenset([vm_uuid]), core=core)


@dataclass
class GzContext:
    """Global zone state for one pass."""

    ancillary: AncillaryData
    records: list[RawStatRecord] = field(default_factory=list)
    samples: list[Sample] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


@dataclass
class GuestContext:
    """Per-guest state for one pass.

    ``instance_id`` is None when resolution failed; ``error`` then says why
    and ``not_found`` tells an unknown guest apart from an inventory fault.
    """

    uuid: str
    instance_id: int | None = None
    error: str | None = None
    not_found: bool = False
    ancillary: AncillaryData | None = None
    records: list[RawStatRecord] = field(default_factory=list)
    samples: list[Sample] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def resolved(self) -> bool:
        return self.instance_id is not None


@dataclass
class Snapshot:
    """Result of one collection pass. Holds no output formatting."""

    timestamp: float
    gz: GzContext | None = None
    guests: dict[str, GuestContext] = field(default_factory=dict)
    records: list[RawStatRecord] = field(default_factory=list)

    def guest(self, vm_uuid: str) -> GuestContext:
        """Return a guest's context, raising if it did not resolve as not-found.

        Raises:
            GuestNotFoundError: If the guest is unknown to the inventory
            KeyError: If the guest was not part of this pass
        """
        context = self.guests[vm_uuid]
        if context.not_found:
            raise GuestNotFoundError(vm_uuid)
        return context

    def failures(self) -> dict[str, str]:
        """Every recorded failure, keyed ``gz/<collector>``, ``<uuid>`` or ``<uuid>/<collector>``."""
        result: dict[str, str] = {}
        if self.gz is not None:
            for key, msg in self.gz.failures.items():
                result[f"gz/{key}"] = msg
        for vm_uuid, context in self.guests.items():
            if context.error is not None:
                result[vm_uuid] = context.error
            for key, msg in context.failures.items():
                result[f"{vm_uuid}/{key}"] = msg
        return result

    def raise_for_failures(self) -> None:
        """Raise PartialCollectionFailure if anything in the pass failed."""
        failures = self.failures()
        if failures:
            raise PartialCollectionFailure(failures)


class CollectionEngine:
    """Orchestrates collection passes over a shared registry and reader.

    Example:
        ```python
        engine = build_engine(config)
        snapshot = await engine.collect(CollectionRequest.for_gz())
        ```
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        reader: KstatReader,
        inventory: GuestInventory,
        filesystem: FilesystemSource | None = None,
        ntp: NtpSource | None = None,
        max_concurrency: int = 16,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._registry = registry
        self._reader = reader
        self._inventory = inventory
        self._filesystem = filesystem
        self._ntp = ntp
        self._max_concurrency = max_concurrency
        self._clock = clock

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    @property
    def reader(self) -> KstatReader:
        return self._reader

    async def collect(self, request: CollectionRequest) -> Snapshot:
        """Run one collection pass.

        Raises:
            InventoryError: If all guests were requested and they could not be listed
            KstatUnavailableError: If the kstat interface is unusable
        """
        snapshot = Snapshot(timestamp=self._clock())
        semaphore = asyncio.Semaphore(self._max_concurrency)

        guests = await self._resolve_stage(request, semaphore)
        snapshot.guests = {g.uuid: g for g in guests}
        resolved = [g for g in guests if g.resolved]

        if request.include_gz:
            snapshot.gz = GzContext(ancillary=AncillaryData(timestamp=snapshot.timestamp))
        await self._ancillary_stage(snapshot, resolved, semaphore)

        gz_queries, guest_queries = self._query_stage(request, snapshot, resolved)
        all_queries = list(dict.fromkeys(_chain(gz_queries, *guest_queries.values())))

        if all_queries:
            snapshot.records = await asyncio.to_thread(self._reader.read, all_queries)

        self._produce_stage(request, snapshot, resolved, gz_queries, guest_queries)
        logger.debug(
            f"Collection pass: gz={request.include_gz}, {len(resolved)}/{len(guests)} guests "
            f"resolved, {len(all_queries)} distinct queries, {len(snapshot.records)} records"
        )
        return snapshot

    async def _run_blocking(
        self, semaphore: asyncio.Semaphore, fn: Callable[..., T], *args: Any
    ) -> T:
        async with semaphore:
            return await asyncio.to_thread(fn, *args)

    async def _resolve_stage(
        self, request: CollectionRequest, semaphore: asyncio.Semaphore
    ) -> list[GuestContext]:
        resolver = InstanceResolver(self._inventory)
        if request.guest_uuids is None:
            listed = await asyncio.to_thread(self._inventory.running_guests)
            resolver.prime(listed)
            uuids = sorted({g.uuid for g in listed})
        else:
            uuids = sorted(request.guest_uuids)

        contexts = [GuestContext(uuid=u) for u in uuids]
        results = await asyncio.gather(
            *(self._run_blocking(semaphore, resolver.resolve, c.uuid) for c in contexts),
            return_exceptions=True,
        )
        for context, result in zip(contexts, results):
            if isinstance(result, GuestNotFoundError):
                context.error = str(result)
                context.not_found = True
                logger.info(f"Guest {context.uuid} not found")
            elif isinstance(result, Exception):
                context.error = f"resolution failed: {result}"
                logger.warning(f"Failed to resolve guest {context.uuid}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                context.instance_id = result
        return contexts

    async def _ancillary_stage(
        self, snapshot: Snapshot, resolved: list[GuestContext], semaphore: asyncio.Semaphore
    ) -> None:
        for context in resolved:
            context.ancillary = AncillaryData(timestamp=snapshot.timestamp)

        tasks = []
        targets: list[tuple[AncillaryData, str]] = []
        if self._filesystem is not None:
            for context in resolved:
                tasks.append(self._run_blocking(semaphore, self._filesystem.usage, context.uuid))
                targets.append((context.ancillary, "zfs"))  # type: ignore[arg-type]
        if snapshot.gz is not None and self._ntp is not None:
            tasks.append(self._run_blocking(semaphore, self._ntp.status))
            targets.append((snapshot.gz.ancillary, "ntp"))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for (ancillary, source), result in zip(targets, results):
            if isinstance(result, Exception):
                ancillary.errors[source] = str(result)
                logger.warning(f"Failed to fetch {source} data: {result}")
            elif isinstance(result, BaseException):
                raise result
            elif source == "zfs":
                ancillary.filesystem = result
            else:
                ancillary.ntp = result

    def _query_stage(
        self, request: CollectionRequest, snapshot: Snapshot, resolved: list[GuestContext]
    ) -> tuple[list[KstatQuery], dict[str, list[KstatQuery]]]:
        gz_queries: list[KstatQuery] = []
        if snapshot.gz is not None:
            gz_queries = self._registry.queries_for(CollectorScope.GZ)
        guest_queries = {
            c.uuid: self._registry.queries_for(CollectorScope.GUEST, c.instance_id, request.core)
            for c in resolved
        }
        return gz_queries, guest_queries

    def _produce_stage(
        self,
        request: CollectionRequest,
        snapshot: Snapshot,
        resolved: list[GuestContext],
        gz_queries: list[KstatQuery],
        guest_queries: dict[str, list[KstatQuery]],
    ) -> None:
        by_query: dict[KstatQuery, list[RawStatRecord]] = {}
        for record in snapshot.records:
            by_query.setdefault(record.query, []).append(record)

        def records_for(queries: list[KstatQuery]) -> list[RawStatRecord]:
            return [r for q in queries for r in by_query.get(q, [])]

        if snapshot.gz is not None:
            gz = snapshot.gz
            gz.records = records_for(gz_queries)
            result = self._registry.produce_for(CollectorScope.GZ, gz.records, gz.ancillary)
            gz.samples, gz.failures = result.samples, result.failures

        for context in resolved:
            context.records = records_for(guest_queries[context.uuid])
            result = self._registry.produce_for(
                CollectorScope.GUEST,
                context.records,
                context.ancillary,  # type: ignore[arg-type]
                labels={VM_UUID_LABEL: context.uuid},
                core=request.core,
                instance_id=context.instance_id,
            )
            context.samples, context.failures = result.samples, result.failures


def _chain(*groups: Iterable[KstatQuery]) -> Iterable[KstatQuery]:
    for group in groups:
        yield from group


def build_engine(
    config: AgentConfig | None = None, registry: CollectorRegistry | None = None
) -> CollectionEngine:
    """Construct the process-wide engine from configuration.

    The registry and reader built here are the only shared state; callers
    pass the engine explicitly to the HTTP app or CLI. Without a config the
    default command paths, pool and limits apply.
    """
    if config is None:
        fields = AgentConfig.model_fields
        commands = CommandsConfig()
        timeout = fields["command_timeout_seconds"].default
        zfs_pool = fields["zfs_pool"].default
        max_concurrency = fields["max_concurrency"].default
    else:
        commands = config.commands
        timeout = config.command_timeout_seconds
        zfs_pool = config.zfs_pool
        max_concurrency = config.max_concurrency
    return CollectionEngine(
        registry=registry or build_default_registry(),
        reader=KstatReader(CommandKstatSource(commands.kstat, timeout=timeout)),
        inventory=ZoneadmInventory(commands.zoneadm, timeout=timeout),
        filesystem=ZfsFilesystemSource(commands.zfs, pool=zfs_pool, timeout=timeout),
        ntp=NtpqSource(commands.ntpq, timeout=timeout),
        max_concurrency=max_concurrency,
    )
