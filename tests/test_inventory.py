"""Tests for guest inventory and instance resolution."""

from unittest.mock import patch

import pytest
from conftest import GUEST_A, ZONE_A

from cmon_agent.core.errors import GuestNotFoundError
from cmon_agent.inventory import (
    GuestInfo,
    InstanceResolver,
    InventoryError,
    ZoneadmInventory,
    parse_zoneadm_output,
)
from cmon_agent.utils.commands import CommandError

ZONEADM_OUTPUT = """\
0:global:running:/::joyent:shared:0
5:11111111-1111-1111-1111-111111111111:running:/zones/11111111-1111-1111-1111-111111111111:11111111-1111-1111-1111-111111111111:joyent-minimal:excl:5
7:22222222-2222-2222-2222-222222222222:running:/zones/22222222-2222-2222-2222-222222222222:22222222-2222-2222-2222-222222222222:lx:excl:7
-:33333333-3333-3333-3333-333333333333:installed:/zones/33333333-3333-3333-3333-333333333333:33333333-3333-3333-3333-333333333333:joyent:excl:0
"""


class TestParseZoneadm:
    """Tests for zoneadm output parsing."""

    def test_skips_global_zone(self) -> None:
        """Test that the global zone is excluded."""
        guests = parse_zoneadm_output(ZONEADM_OUTPUT)
        assert all(g.instance_id != 0 for g in guests)
        assert len(guests) == 3

    def test_fields(self) -> None:
        """Test parsed zone fields."""
        guest = parse_zoneadm_output(ZONEADM_OUTPUT)[0]
        assert guest == GuestInfo(uuid=GUEST_A, instance_id=ZONE_A, state="running")
        assert guest.running

    def test_not_running_zone(self) -> None:
        """Test zone that is not running."""
        guest = parse_zoneadm_output(ZONEADM_OUTPUT)[-1]
        assert guest.instance_id == -1
        assert not guest.running

    def test_skips_junk(self) -> None:
        """Test that junk lines are skipped."""
        assert parse_zoneadm_output("garbage\nx:y:z:w:v\n\n") == []


class TestZoneadmInventory:
    """Tests for ZoneadmInventory."""

    @patch("cmon_agent.inventory.run_command")
    def test_running_guests(self, mock_run) -> None:
        """Test listing running guests."""
        mock_run.return_value = ZONEADM_OUTPUT
        guests = ZoneadmInventory("/usr/sbin/zoneadm").running_guests()
        assert [g.instance_id for g in guests] == [5, 7]

    @patch("cmon_agent.inventory.run_command")
    def test_running_guests_failure(self, mock_run) -> None:
        """Test zoneadm failure while listing guests."""
        mock_run.side_effect = CommandError(["zoneadm"], "timed out after 10s")
        with pytest.raises(InventoryError):
            ZoneadmInventory().running_guests()

    @patch("cmon_agent.inventory.run_command")
    def test_lookup(self, mock_run) -> None:
        """Test lookup of a single zone."""
        mock_run.return_value = ZONEADM_OUTPUT.splitlines()[1] + "\n"
        guest = ZoneadmInventory().lookup(GUEST_A)
        assert guest.instance_id == ZONE_A
        argv = mock_run.call_args[0][0]
        assert [str(a) for a in argv[1:]] == ["-z", GUEST_A, "list", "-p"]

    @patch("cmon_agent.inventory.run_command")
    def test_lookup_no_such_zone(self, mock_run) -> None:
        """Test lookup of an unconfigured zone."""
        mock_run.side_effect = CommandError(["zoneadm"], "exited 1: No such zone configured", 1)
        assert ZoneadmInventory().lookup("nope") is None

    @patch("cmon_agent.inventory.run_command")
    def test_lookup_failure(self, mock_run) -> None:
        """Test lookup failure other than a missing zone."""
        mock_run.side_effect = CommandError(["zoneadm"], "exited 2: permission denied", 2)
        with pytest.raises(InventoryError):
            ZoneadmInventory().lookup(GUEST_A)


class TestInstanceResolver:
    """Tests for InstanceResolver."""

    def test_resolve(self, inventory) -> None:
        """Test resolving a running guest."""
        assert InstanceResolver(inventory).resolve(GUEST_A) == ZONE_A

    def test_unknown_guest(self, inventory) -> None:
        """Test resolving an unknown guest."""
        with pytest.raises(GuestNotFoundError) as exc_info:
            InstanceResolver(inventory).resolve("44444444-4444-4444-4444-444444444444")
        assert exc_info.value.vm_uuid == "44444444-4444-4444-4444-444444444444"

    def test_stopped_guest_not_found(self, inventory) -> None:
        """Test stopped guest not found."""
        with pytest.raises(GuestNotFoundError):
            InstanceResolver(inventory).resolve("33333333-3333-3333-3333-333333333333")

    def test_primed_cache_avoids_lookup(self, inventory) -> None:
        """Test primed cache avoids lookup."""
        resolver = InstanceResolver(inventory)
        resolver.prime(inventory.running_guests())
        resolver.resolve(GUEST_A)
        assert inventory.lookups == []

    def test_cache_within_resolver(self, inventory) -> None:
        """Test that a resolver caches lookups."""
        resolver = InstanceResolver(inventory)
        resolver.resolve(GUEST_A)
        resolver.resolve(GUEST_A)
        assert inventory.lookups == [GUEST_A]

    def test_lookup_failure_is_not_found(self, inventory) -> None:
        """Test failed lookup raises not found."""
        inventory.error = InventoryError("zoneadm: zone vanished")
        with pytest.raises(GuestNotFoundError) as exc_info:
            InstanceResolver(inventory).resolve(GUEST_A)
        assert exc_info.value.vm_uuid == GUEST_A
        assert isinstance(exc_info.value.__cause__, InventoryError)
