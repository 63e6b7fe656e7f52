"""Global zone collectors.

kstats sourced:
- zfs:0:arcstats: ARC and L2ARC hit/miss counters and sizes
- cpu_info: per-CPU clock rate and state
- cpu:*:sys (delta): per-CPU user/kernel/idle utilization
- unix:0:vminfo (delta): free memory and swap, averaged per second
- unix:0:system_misc: boot time, process and CPU counts

Plus the NTP collector, fed from the ancillary NTP peer table.
"""

from __future__ import annotations

from collections.abc import Sequence

from cmon_agent.ancillary import AncillaryData
from cmon_agent.collectors.base import (
    Collector,
    CollectorScope,
    Sample,
    counter,
    gauge,
    require_one,
    select,
)
from cmon_agent.core.constants import NANOSEC
from cmon_agent.core.errors import MissingDataError
from cmon_agent.kstat.query import KstatQuery, RawStatRecord

ARCSTATS_QUERY = KstatQuery(module="zfs", kclass="misc", name="arcstats", instance=0)
CPU_INFO_QUERY = KstatQuery(module="cpu_info", kclass="misc")
CPU_STAT_QUERY = KstatQuery(module="cpu", kclass="misc", name="sys", delta=True)
VMINFO_QUERY = KstatQuery(module="unix", kclass="vm", name="vminfo", instance=0, delta=True)
SYSTEM_MISC_QUERY = KstatQuery(module="unix", kclass="misc", name="system_misc", instance=0)

_ARC_COUNTERS = (
    ("arcstats_hits", "hits", "ARC hits"),
    ("arcstats_misses", "misses", "ARC misses"),
    ("arcstats_l2_hits", "l2_hits", "L2ARC hits"),
    ("arcstats_l2_misses", "l2_misses", "L2ARC misses"),
)

_ARC_GAUGES = (
    ("arcstats_size", "size", "ARC size in bytes"),
    ("arcstats_target_size", "c", "ARC target size in bytes"),
    ("arcstats_max_size", "c_max", "ARC maximum size in bytes"),
    ("arcstats_l2_size", "l2_size", "L2ARC size in bytes"),
)

_CPU_MODES = (
    ("user", "cpu_nsec_user"),
    ("kernel", "cpu_nsec_kernel"),
    ("idle", "cpu_nsec_idle"),
)

_VMINFO_GAUGES = (
    ("vminfo_freemem_pages", "freemem", "Free memory in pages"),
    ("vminfo_swap_alloc_pages", "swap_alloc", "Allocated swap in pages"),
    ("vminfo_swap_avail_pages", "swap_avail", "Available swap in pages"),
    ("vminfo_swap_free_pages", "swap_free", "Free swap in pages"),
    ("vminfo_swap_resv_pages", "swap_resv", "Reserved swap in pages"),
)


def produce_arcstats(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "zfs", "misc")
    samples = [counter(name, record.get_int(field), help) for name, field, help in _ARC_COUNTERS]
    samples += [gauge(name, record.get_int(field), help) for name, field, help in _ARC_GAUGES]
    return samples


def produce_cpu_info(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    cpus = sorted(select(records, "cpu_info", "misc"), key=lambda r: r.instance)
    if not cpus:
        raise MissingDataError("no cpu_info kstats")
    samples: list[Sample] = []
    for cpu in cpus:
        cpu_id = str(cpu.instance)
        samples.append(
            gauge("cpu_info_clock_mhz", cpu.get_int("clock_MHz"), "CPU clock rate in MHz", cpu=cpu_id)
        )
        samples.append(
            gauge(
                "cpu_info_online",
                1 if cpu.data.get("state") == "on-line" else 0,
                "Whether the CPU is online",
                cpu=cpu_id,
            )
        )
    return samples


def produce_cpu_stat(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    cpus = sorted(select(records, "cpu", "misc"), key=lambda r: r.instance)
    samples: list[Sample] = []
    for cpu in cpus:
        # No rate on the first read or over a zero-length interval.
        if not cpu.has_rates:
            continue
        for mode, field in _CPU_MODES:
            rate = cpu.deltas.get(field)
            if rate is None:
                continue
            samples.append(
                gauge(
                    "cpu_utilization",
                    rate / NANOSEC,
                    "Fraction of one CPU spent in each mode since the previous read",
                    cpu=str(cpu.instance),
                    mode=mode,
                )
            )
    return samples


def produce_vminfo(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "unix", "vm")
    if not record.has_rates:
        return []
    return [
        gauge(name, record.deltas[field], help)
        for name, field, help in _VMINFO_GAUGES
        if field in record.deltas
    ]


def produce_system_misc(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "unix", "misc")
    return [
        gauge("system_boot_time_seconds", record.get_int("boot_time"), "Boot time, seconds since the epoch"),
        gauge("system_process_count", record.get_int("nproc"), "Number of processes"),
        gauge("system_cpu_count", record.get_int("ncpus"), "Number of CPUs"),
    ]


def produce_ntp(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    status = ancillary.ntp
    if status is None:
        reason = ancillary.errors.get("ntp", "not fetched")
        raise MissingDataError(f"no NTP status: {reason}")
    samples = [
        gauge("ntp_synchronized", 1 if status.synchronized else 0, "Whether NTP has a system peer")
    ]
    for peer in status.peers:
        samples += [
            gauge("ntp_peer_offset_seconds", peer.offset, "NTP peer offset in seconds", remote=peer.remote),
            gauge("ntp_peer_delay_seconds", peer.delay, "NTP peer delay in seconds", remote=peer.remote),
            gauge("ntp_peer_jitter_seconds", peer.jitter, "NTP peer jitter in seconds", remote=peer.remote),
            gauge("ntp_peer_stratum", peer.stratum, "NTP peer stratum", remote=peer.remote),
            gauge("ntp_peer_reach", peer.reach, "NTP peer reachability register", remote=peer.remote),
        ]
    return samples


ARCSTATS = Collector(
    key="arcstats",
    scope=CollectorScope.GZ,
    produce=produce_arcstats,
    queries=(ARCSTATS_QUERY,),
    metrics=tuple(name for name, _, _ in _ARC_COUNTERS + _ARC_GAUGES),
)

CPU_INFO = Collector(
    key="cpu_info",
    scope=CollectorScope.GZ,
    produce=produce_cpu_info,
    queries=(CPU_INFO_QUERY,),
    metrics=("cpu_info_clock_mhz", "cpu_info_online"),
)

CPU_STAT = Collector(
    key="cpu_stat",
    scope=CollectorScope.GZ,
    produce=produce_cpu_stat,
    queries=(CPU_STAT_QUERY,),
    metrics=("cpu_utilization",),
)

VMINFO = Collector(
    key="vminfo",
    scope=CollectorScope.GZ,
    produce=produce_vminfo,
    queries=(VMINFO_QUERY,),
    metrics=tuple(name for name, _, _ in _VMINFO_GAUGES),
)

SYSTEM_MISC = Collector(
    key="system_misc",
    scope=CollectorScope.GZ,
    produce=produce_system_misc,
    queries=(SYSTEM_MISC_QUERY,),
    metrics=("system_boot_time_seconds", "system_process_count", "system_cpu_count"),
)

NTP = Collector(
    key="ntp",
    scope=CollectorScope.GZ,
    produce=produce_ntp,
    metrics=(
        "ntp_synchronized",
        "ntp_peer_offset_seconds",
        "ntp_peer_delay_seconds",
        "ntp_peer_jitter_seconds",
        "ntp_peer_stratum",
        "ntp_peer_reach",
    ),
)

GZ_COLLECTORS: tuple[Collector, ...] = (
    ARCSTATS,
    CPU_INFO,
    CPU_STAT,
    VMINFO,
    SYSTEM_MISC,
    NTP,
)
