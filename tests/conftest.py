"""Shared fixtures: in-memory kstat, inventory and ancillary sources."""

from __future__ import annotations

import pytest

from cmon_agent.ancillary import (
    FilesystemSource,
    FilesystemUsage,
    NtpPeer,
    NtpSource,
    NtpStatus,
)
from cmon_agent.collectors.registry import build_default_registry
from cmon_agent.core.errors import AncillaryFetchError
from cmon_agent.engine import CollectionEngine
from cmon_agent.inventory import GuestInfo, GuestInventory
from cmon_agent.kstat.query import KstatEntry, KstatQuery
from cmon_agent.kstat.reader import KstatReader
from cmon_agent.kstat.source import KstatSource

GUEST_A = "11111111-1111-1111-1111-111111111111"
GUEST_B = "22222222-2222-2222-2222-222222222222"
ZONE_A = 5
ZONE_B = 7

SNAPTIME = 1_000 * 1_000_000_000


def kstat_entry(
    module: str, kclass: str, name: str, instance: int, snaptime: int = SNAPTIME, **data
) -> KstatEntry:
    return KstatEntry(
        module=module, kclass=kclass, name=name, instance=instance, snaptime=snaptime, data=data
    )


def gz_entries(snaptime: int = SNAPTIME) -> list[KstatEntry]:
    return [
        kstat_entry(
            "zfs", "misc", "arcstats", 0, snaptime,
            hits=1000, misses=50, l2_hits=20, l2_misses=5,
            size=4096, c=8192, c_max=16384, l2_size=0,
        ),
        kstat_entry("cpu_info", "misc", "cpu_info0", 0, snaptime, clock_MHz=2400, state="on-line"),
        kstat_entry("cpu_info", "misc", "cpu_info1", 1, snaptime, clock_MHz=2400, state="off-line"),
        kstat_entry(
            "cpu", "misc", "sys", 0, snaptime,
            cpu_nsec_user=10_000_000_000, cpu_nsec_kernel=5_000_000_000, cpu_nsec_idle=85_000_000_000,
        ),
        kstat_entry(
            "unix", "vm", "vminfo", 0, snaptime,
            freemem=1000, swap_alloc=100, swap_avail=5000, swap_free=4000, swap_resv=200,
        ),
        kstat_entry("unix", "misc", "system_misc", 0, snaptime, boot_time=1700000000, nproc=120, ncpus=2),
    ]


def guest_entries(zone_id: int, snaptime: int = SNAPTIME) -> list[KstatEntry]:
    zonename = f"zone{zone_id}"
    return [
        kstat_entry(
            "zones", "zone_misc", zonename, zone_id, snaptime,
            nsec_user=3_000_000_000, nsec_sys=1_500_000_000, nsec_waitrq=250_000_000,
            avenrun_1min=512, zonename=zonename,
        ),
        kstat_entry(
            "caps", "zone_caps", f"cpucaps_zone_{zone_id}", zone_id, snaptime,
            usage=42, value=200, above_sec=3, below_sec=100, nwait=0,
        ),
        kstat_entry(
            "memory_cap", "zone_memory_cap", zonename, zone_id, snaptime,
            rss=1048576, physcap=2097152, swap=524288, swapcap=4194304,
            anon_alloc_fail=0, nover=2, pagedout=4096,
        ),
        kstat_entry(
            "link", "net", "net0", zone_id, snaptime,
            ipackets64=100, opackets64=80, rbytes64=10000, obytes64=8000, ierrors=1, oerrors=0,
        ),
        kstat_entry(
            "link", "net", "net1", zone_id, snaptime,
            ipackets64=10, opackets64=20, rbytes64=1000, obytes64=2000, ierrors=0, oerrors=2,
        ),
        kstat_entry(
            "tcp", "mib2", "tcp", zone_id, snaptime,
            attemptFails=1, retransSegs=2, inDupAck=3, listenDrop=4, listenDropQ0=5,
            halfOpenDrop=6, timRetransDrop=7, activeOpens=8, passiveOpens=9, currEstab=10,
        ),
        kstat_entry(
            "zone_vfs", "zone_vfs", zonename, zone_id, snaptime,
            nread=4096, nwritten=2048, reads=10, writes=5,
            wtime=2_000_000_000, wlentime=3_000_000_000, rtime=500_000_000, rlentime=750_000_000,
            **{"10ms_ops": 4, "100ms_ops": 3, "1s_ops": 2, "10s_ops": 1},
        ),
    ]


class FakeKstatSource(KstatSource):
    """KstatSource over a fixed entry list that counts lookups."""

    def __init__(self, entries: list[KstatEntry] | None = None) -> None:
        self.entries = list(entries or [])
        self.lookups: list[KstatQuery] = []
        self.failing: dict[KstatQuery, Exception] = {}

    @property
    def name(self) -> str:
        return "fake"

    def lookup(self, query: KstatQuery) -> list[KstatEntry]:
        self.lookups.append(query)
        if query in self.failing:
            raise self.failing[query]
        return [e for e in self.entries if query.matches(e)]


class FakeInventory(GuestInventory):
    def __init__(self, guests: list[GuestInfo] | None = None) -> None:
        self.guests = {g.uuid: g for g in guests or []}
        self.error: Exception | None = None
        self.lookups: list[str] = []

    def running_guests(self) -> list[GuestInfo]:
        if self.error is not None:
            raise self.error
        return [g for g in self.guests.values() if g.running]

    def lookup(self, vm_uuid: str) -> GuestInfo | None:
        self.lookups.append(vm_uuid)
        if self.error is not None:
            raise self.error
        return self.guests.get(vm_uuid)


class FakeFilesystem(FilesystemSource):
    def __init__(self, usage: dict[str, tuple[int, int]] | None = None) -> None:
        self.usage_by_guest = dict(usage or {})
        self.failing: set[str] = set()

    def usage(self, vm_uuid: str) -> FilesystemUsage:
        if vm_uuid in self.failing or vm_uuid not in self.usage_by_guest:
            raise AncillaryFetchError(f"cannot open 'zones/{vm_uuid}': dataset does not exist")
        used, available = self.usage_by_guest[vm_uuid]
        return FilesystemUsage(dataset=f"zones/{vm_uuid}", used=used, available=available)


class FakeNtp(NtpSource):
    def __init__(self, status: NtpStatus | None = None) -> None:
        self._status = status
        self.error: Exception | None = None

    def status(self) -> NtpStatus:
        if self.error is not None:
            raise self.error
        if self._status is None:
            raise AncillaryFetchError("ntpq: read: Connection refused")
        return self._status


@pytest.fixture
def kstat_source() -> FakeKstatSource:
    return FakeKstatSource(gz_entries() + guest_entries(ZONE_A) + guest_entries(ZONE_B))


@pytest.fixture
def inventory() -> FakeInventory:
    return FakeInventory(
        [
            GuestInfo(uuid=GUEST_A, instance_id=ZONE_A, state="running"),
            GuestInfo(uuid=GUEST_B, instance_id=ZONE_B, state="running"),
            GuestInfo(uuid="33333333-3333-3333-3333-333333333333", instance_id=-1, state="installed"),
        ]
    )


@pytest.fixture
def filesystem() -> FakeFilesystem:
    return FakeFilesystem({GUEST_A: (1000, 9000), GUEST_B: (2000, 8000)})


@pytest.fixture
def ntp() -> FakeNtp:
    peer = NtpPeer(
        remote="10.0.0.1",
        tally="*",
        refid=".GPS.",
        stratum=1,
        peer_type="u",
        when=33,
        poll=64,
        reach=255,
        delay=0.000412,
        offset=-0.000027,
        jitter=0.000013,
    )
    return FakeNtp(NtpStatus(peers=(peer,)))


@pytest.fixture
def engine(kstat_source, inventory, filesystem, ntp) -> CollectionEngine:
    return CollectionEngine(
        registry=build_default_registry(),
        reader=KstatReader(kstat_source),
        inventory=inventory,
        filesystem=filesystem,
        ntp=ntp,
        max_concurrency=4,
        clock=lambda: 1700000000.5,
    )
