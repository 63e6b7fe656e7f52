"""Guest (zone) collectors.

Each guest's kstats live under its zone id as the kstat instance. Query
templates here leave ``instance`` unset; the registry fills it in per guest.

kstats sourced:
- zones:zone_misc: CPU time and load average
- caps:zone_caps: CPU cap usage and limit
- memory_cap:zone_memory_cap: RSS, swap and their caps
- link:net: per-link network counters (aggregated)
- tcp:mib2: TCP MIB counters
- zone_vfs: VFS I/O counters and latency buckets
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
from cmon_agent.core.constants import FSCALE, NANOSEC
from cmon_agent.core.errors import MissingDataError
from cmon_agent.kstat.query import KstatQuery, RawStatRecord

ZONE_MISC_QUERY = KstatQuery(module="zones", kclass="zone_misc")
CPU_CAP_QUERY = KstatQuery(module="caps", kclass="zone_caps", name="cpucaps_zone_{instance}")
MEMORY_CAP_QUERY = KstatQuery(module="memory_cap", kclass="zone_memory_cap")
LINK_QUERY = KstatQuery(module="link", kclass="net")
TCP_QUERY = KstatQuery(module="tcp", kclass="mib2", name="tcp")
ZONE_VFS_QUERY = KstatQuery(module="zone_vfs", kclass="zone_vfs")


def produce_zone_misc(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "zones", "zone_misc")
    return [
        counter("cpu_user_usage", record.get_int("nsec_user") / NANOSEC, "User CPU time in seconds"),
        counter("cpu_sys_usage", record.get_int("nsec_sys") / NANOSEC, "System CPU time in seconds"),
        counter(
            "cpu_wait_time",
            record.get_int("nsec_waitrq") / NANOSEC,
            "Time spent waiting on the run queue in seconds",
        ),
        gauge("load_average", record.get_int("avenrun_1min") / FSCALE, "One minute load average"),
    ]


def produce_cpu_cap(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    # The caps kstat only exists for zones with a CPU cap set.
    matched = select(records, "caps", "zone_caps")
    if not matched:
        return []
    record = matched[0]
    return [
        gauge("cpucap_usage", record.get_int("usage"), "CPU usage in percent of one CPU"),
        gauge("cpucap_limit", record.get_int("value"), "CPU cap in percent of one CPU"),
        counter(
            "cpucap_above_seconds_total",
            record.get_int("above_sec"),
            "Time spent above the CPU cap in seconds",
        ),
        counter(
            "cpucap_below_seconds_total",
            record.get_int("below_sec"),
            "Time spent below the CPU cap in seconds",
        ),
        gauge(
            "cpucap_waiting_threads_count",
            record.get_int("nwait"),
            "Threads waiting on the CPU cap",
        ),
    ]


def produce_memory_cap(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "memory_cap", "zone_memory_cap")
    return [
        gauge("mem_agg_usage", record.get_int("rss"), "Aggregate memory usage in bytes"),
        gauge("mem_limit", record.get_int("physcap"), "Memory limit in bytes"),
        gauge("mem_swap", record.get_int("swap"), "Swap usage in bytes"),
        gauge("mem_swap_limit", record.get_int("swapcap"), "Swap limit in bytes"),
        counter(
            "mem_anon_alloc_fail",
            record.get_int("anon_alloc_fail"),
            "Anonymous allocation failures",
        ),
        counter("mem_nover", record.get_int("nover"), "Times the zone went over its memory cap"),
        counter("mem_pagedout", record.get_int("pagedout"), "Bytes paged out by the memory capper"),
    ]


def produce_link(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    links = select(records, "link", "net")
    if not links:
        return []
    totals = {
        "ipackets64": 0,
        "opackets64": 0,
        "rbytes64": 0,
        "obytes64": 0,
        "ierrors": 0,
        "oerrors": 0,
    }
    for link in links:
        for key in totals:
            totals[key] += link.get_int(key)
    return [
        counter("net_agg_packets_in", totals["ipackets64"], "Aggregate inbound packets"),
        counter("net_agg_packets_out", totals["opackets64"], "Aggregate outbound packets"),
        counter("net_agg_bytes_in", totals["rbytes64"], "Aggregate inbound bytes"),
        counter("net_agg_bytes_out", totals["obytes64"], "Aggregate outbound bytes"),
        counter("net_agg_errors_in", totals["ierrors"], "Aggregate inbound errors"),
        counter("net_agg_errors_out", totals["oerrors"], "Aggregate outbound errors"),
    ]


_TCP_COUNTERS = (
    ("tcp_failed_connection_attempt_count", "attemptFails", "Failed TCP connection attempts"),
    ("tcp_retransmitted_segment_count", "retransSegs", "Retransmitted TCP segments"),
    ("tcp_duplicate_ack_count", "inDupAck", "Duplicate TCP ACKs received"),
    ("tcp_listen_drop_count", "listenDrop", "TCP connections dropped from a full listen queue"),
    (
        "tcp_listen_drop_Qzero_count",
        "listenDropQ0",
        "TCP connections dropped from a full half-open queue",
    ),
    ("tcp_half_open_drop_count", "halfOpenDrop", "Half-open TCP connections dropped"),
    (
        "tcp_retransmit_timeout_drop_count",
        "timRetransDrop",
        "TCP connections dropped after retransmit timeout",
    ),
    ("tcp_active_open_count", "activeOpens", "TCP active opens"),
    ("tcp_passive_open_count", "passiveOpens", "TCP passive opens"),
)


def produce_tcp(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "tcp", "mib2")
    samples = [counter(name, record.get_int(field), help) for name, field, help in _TCP_COUNTERS]
    samples.append(
        gauge(
            "tcp_current_established_connections_total",
            record.get_int("currEstab"),
            "Currently established TCP connections",
        )
    )
    return samples


def produce_zone_vfs(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    record = require_one(records, "zone_vfs", "zone_vfs")
    return [
        counter("vfs_bytes_read_count", record.get_int("nread"), "VFS bytes read"),
        counter("vfs_bytes_written_count", record.get_int("nwritten"), "VFS bytes written"),
        counter("vfs_read_operation_count", record.get_int("reads"), "VFS read operations"),
        counter("vfs_write_operation_count", record.get_int("writes"), "VFS write operations"),
        counter(
            "vfs_wait_time_count",
            record.get_int("wtime") / NANOSEC,
            "VFS time spent waiting in seconds",
        ),
        counter(
            "vfs_wait_length_time_count",
            record.get_int("wlentime") / NANOSEC,
            "VFS cumulative wait length by time in seconds",
        ),
        counter(
            "vfs_run_time_count",
            record.get_int("rtime") / NANOSEC,
            "VFS time spent running in seconds",
        ),
        counter(
            "vfs_run_length_time_count",
            record.get_int("rlentime") / NANOSEC,
            "VFS cumulative run length by time in seconds",
        ),
    ]


def produce_zone_vfs_latency(
    records: Sequence[RawStatRecord], ancillary: AncillaryData
) -> list[Sample]:
    record = require_one(records, "zone_vfs", "zone_vfs")
    return [
        counter("vfs_10ms_ops_count", record.get_int("10ms_ops"), "VFS operations over 10ms"),
        counter("vfs_100ms_ops_count", record.get_int("100ms_ops"), "VFS operations over 100ms"),
        counter("vfs_1s_ops_count", record.get_int("1s_ops"), "VFS operations over 1s"),
        counter("vfs_10s_ops_count", record.get_int("10s_ops"), "VFS operations over 10s"),
    ]


def produce_zfs(records: Sequence[RawStatRecord], ancillary: AncillaryData) -> list[Sample]:
    usage = ancillary.filesystem
    if usage is None:
        reason = ancillary.errors.get("zfs", "not fetched")
        raise MissingDataError(f"no filesystem usage: {reason}")
    return [
        gauge("zfs_used", usage.used, "Bytes used by the guest dataset"),
        gauge("zfs_available", usage.available, "Bytes available to the guest dataset"),
    ]


ZONE_MISC = Collector(
    key="zone_misc",
    scope=CollectorScope.GUEST,
    produce=produce_zone_misc,
    queries=(ZONE_MISC_QUERY,),
    metrics=("cpu_user_usage", "cpu_sys_usage", "cpu_wait_time", "load_average"),
)

CPU_CAP = Collector(
    key="cpu_cap",
    scope=CollectorScope.GUEST,
    produce=produce_cpu_cap,
    queries=(CPU_CAP_QUERY,),
    metrics=(
        "cpucap_usage",
        "cpucap_limit",
        "cpucap_above_seconds_total",
        "cpucap_below_seconds_total",
        "cpucap_waiting_threads_count",
    ),
)

MEMORY_CAP = Collector(
    key="memory_cap",
    scope=CollectorScope.GUEST,
    produce=produce_memory_cap,
    queries=(MEMORY_CAP_QUERY,),
    metrics=(
        "mem_agg_usage",
        "mem_limit",
        "mem_swap",
        "mem_swap_limit",
        "mem_anon_alloc_fail",
        "mem_nover",
        "mem_pagedout",
    ),
)

LINK = Collector(
    key="link",
    scope=CollectorScope.GUEST,
    produce=produce_link,
    queries=(LINK_QUERY,),
    metrics=(
        "net_agg_packets_in",
        "net_agg_packets_out",
        "net_agg_bytes_in",
        "net_agg_bytes_out",
        "net_agg_errors_in",
        "net_agg_errors_out",
    ),
)

TCP = Collector(
    key="tcp",
    scope=CollectorScope.GUEST,
    produce=produce_tcp,
    queries=(TCP_QUERY,),
    metrics=tuple(name for name, _, _ in _TCP_COUNTERS)
    + ("tcp_current_established_connections_total",),
)

ZONE_VFS = Collector(
    key="zone_vfs",
    scope=CollectorScope.GUEST,
    produce=produce_zone_vfs,
    queries=(ZONE_VFS_QUERY,),
    metrics=(
        "vfs_bytes_read_count",
        "vfs_bytes_written_count",
        "vfs_read_operation_count",
        "vfs_write_operation_count",
        "vfs_wait_time_count",
        "vfs_wait_length_time_count",
        "vfs_run_time_count",
        "vfs_run_length_time_count",
    ),
)

ZONE_VFS_LATENCY = Collector(
    key="zone_vfs_latency",
    scope=CollectorScope.GUEST,
    produce=produce_zone_vfs_latency,
    queries=(ZONE_VFS_QUERY,),
    metrics=("vfs_10ms_ops_count", "vfs_100ms_ops_count", "vfs_1s_ops_count", "vfs_10s_ops_count"),
    core_only=True,
)

ZFS = Collector(
    key="zfs",
    scope=CollectorScope.GUEST,
    produce=produce_zfs,
    metrics=("zfs_used", "zfs_available"),
)

VM_COLLECTORS: tuple[Collector, ...] = (
    ZONE_MISC,
    CPU_CAP,
    MEMORY_CAP,
    LINK,
    TCP,
    ZONE_VFS,
    ZONE_VFS_LATENCY,
    ZFS,
)
