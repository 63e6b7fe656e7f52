"""Tests for CollectorRegistry."""

import pytest

from cmon_agent.ancillary import AncillaryData
from cmon_agent.collectors.base import Collector, CollectorScope, gauge
from cmon_agent.collectors.registry import CollectorRegistry, build_default_registry
from cmon_agent.collectors.vm import CPU_CAP_QUERY, ZONE_VFS_QUERY
from cmon_agent.core.errors import ConfigurationError, MissingDataError
from cmon_agent.kstat.query import KstatQuery, RawStatRecord

QUERY_A = KstatQuery(module="a")
QUERY_B = KstatQuery(module="b")


def record_for(query: KstatQuery, **data) -> RawStatRecord:
    return RawStatRecord(
        module=query.module,
        kclass="misc",
        name=query.module,
        instance=query.instance or 0,
        snaptime=1,
        data=data,
        query=query,
    )


def echo(name: str):
    def produce(records, ancillary):
        return [gauge(name, len(records))]

    return produce


class TestRegistryValidation:
    """Tests for registry construction checks."""

    def test_default_registry_is_valid(self) -> None:
        """Test default registry is valid."""
        registry = build_default_registry()
        assert len(registry.collectors) > 0

    def test_duplicate_key_in_scope(self) -> None:
        """Test duplicate key in scope."""
        collectors = [
            Collector(key="x", scope=CollectorScope.GZ, produce=echo("m1"), metrics=("m1",)),
            Collector(key="x", scope=CollectorScope.BOTH, produce=echo("m2"), metrics=("m2",)),
        ]
        with pytest.raises(ConfigurationError, match="duplicate collector key"):
            CollectorRegistry(collectors)

    def test_same_key_in_different_scopes(self) -> None:
        """Test same key in different scopes."""
        CollectorRegistry(
            [
                Collector(key="x", scope=CollectorScope.GZ, produce=echo("m1"), metrics=("m1",)),
                Collector(key="x", scope=CollectorScope.GUEST, produce=echo("m1"), metrics=("m1",)),
            ]
        )

    def test_duplicate_metric_in_scope(self) -> None:
        """Test duplicate metric in scope."""
        collectors = [
            Collector(key="x", scope=CollectorScope.GUEST, produce=echo("m"), metrics=("m",)),
            Collector(key="y", scope=CollectorScope.GUEST, produce=echo("m"), metrics=("m",)),
        ]
        with pytest.raises(ConfigurationError, match="metric 'm'"):
            CollectorRegistry(collectors)


class TestRegistryQueries:
    """Tests for query collection."""

    def test_gz_queries_deduplicated(self) -> None:
        """Test GZ queries listed once each."""
        registry = CollectorRegistry(
            [
                Collector(key="x", scope=CollectorScope.GZ, produce=echo("m1"), queries=(QUERY_A,)),
                Collector(key="y", scope=CollectorScope.GZ, produce=echo("m2"), queries=(QUERY_A, QUERY_B)),
            ]
        )
        assert registry.queries_for(CollectorScope.GZ) == [QUERY_A, QUERY_B]

    def test_guest_queries_need_instance(self) -> None:
        """Test guest queries need instance."""
        with pytest.raises(ValueError):
            build_default_registry().queries_for(CollectorScope.GUEST)

    def test_both_is_not_a_consumer_scope(self) -> None:
        """Test both is not a consumer scope."""
        with pytest.raises(ValueError):
            build_default_registry().active(CollectorScope.BOTH)

    def test_guest_queries_instantiated(self) -> None:
        """Test guest queries instantiated."""
        queries = build_default_registry().queries_for(CollectorScope.GUEST, instance_id=5)
        assert all(q.instance == 5 for q in queries)
        assert CPU_CAP_QUERY.for_instance(5) in queries

    def test_core_guest_shares_vfs_query(self) -> None:
        """Test core guest shares VFS query."""
        registry = build_default_registry()
        plain = registry.queries_for(CollectorScope.GUEST, instance_id=5)
        core = registry.queries_for(CollectorScope.GUEST, instance_id=5, core=True)
        assert plain == core
        assert core.count(ZONE_VFS_QUERY.for_instance(5)) == 1

    def test_core_only_collector_active_for_core(self) -> None:
        """Test core only collector active for core."""
        registry = build_default_registry()
        plain = {c.key for c in registry.active(CollectorScope.GUEST)}
        core = {c.key for c in registry.active(CollectorScope.GUEST, core=True)}
        assert core - plain == {"zone_vfs_latency"}


class TestRegistryProduce:
    """Tests for sample production."""

    def test_collectors_see_only_their_records(self) -> None:
        """Test collectors see only their records."""
        registry = CollectorRegistry(
            [
                Collector(key="x", scope=CollectorScope.GZ, produce=echo("mx"), queries=(QUERY_A,)),
                Collector(key="y", scope=CollectorScope.GZ, produce=echo("my"), queries=(QUERY_B,)),
            ]
        )
        records = [record_for(QUERY_A), record_for(QUERY_A), record_for(QUERY_B)]
        result = registry.produce_for(CollectorScope.GZ, records, AncillaryData(timestamp=0))
        assert [(s.name, s.value) for s in result.samples] == [("mx", 2), ("my", 1)]
        assert result.failures == {}

    def test_failing_collector_isolated(self) -> None:
        """Test that a failing collector does not affect siblings."""
        def missing(records, ancillary):
            raise MissingDataError("no a kstat")

        def broken(records, ancillary):
            raise ZeroDivisionError("division by zero")

        registry = CollectorRegistry(
            [
                Collector(key="missing", scope=CollectorScope.GZ, produce=missing),
                Collector(key="broken", scope=CollectorScope.GZ, produce=broken),
                Collector(key="ok", scope=CollectorScope.GZ, produce=echo("ok")),
            ]
        )
        result = registry.produce_for(CollectorScope.GZ, [], AncillaryData(timestamp=0))
        assert [s.name for s in result.samples] == ["ok"]
        assert result.failures == {
            "missing": "no a kstat",
            "broken": "ZeroDivisionError: division by zero",
        }

    def test_labels_added(self) -> None:
        """Test labels added to produced samples."""
        registry = CollectorRegistry(
            [Collector(key="x", scope=CollectorScope.GUEST, produce=echo("m"))]
        )
        result = registry.produce_for(
            CollectorScope.GUEST,
            [],
            AncillaryData(timestamp=0),
            labels={"vm_uuid": "abc"},
            instance_id=3,
        )
        assert result.samples[0].labels == {"vm_uuid": "abc"}
