"""Guest inventory and instance resolution.

Guests are identified externally by UUID and internally by the zone id the
kernel uses as the kstat instance for that guest's statistics.
``ZoneadmInventory`` reads the host's zone table with ``zoneadm list -p``,
which prints one line per zone:

    zoneid:zonename:state:zonepath:uuid:brand:ip-type

On SmartOS the zone name is the VM UUID.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from cmon_agent.core.constants import GLOBAL_ZONE_ID
from cmon_agent.core.errors import CmonAgentError, GuestNotFoundError
from cmon_agent.utils.commands import CommandError, run_command

logger = logging.getLogger(__name__)

# zoneadm exits 1 for "No such zone configured".
_NO_SUCH_ZONE_EXIT = 1


class InventoryError(CmonAgentError):
    """The guest inventory could not be queried."""


@dataclass(frozen=True)
class GuestInfo:
    """One guest as listed by the inventory."""

    uuid: str
    instance_id: int
    state: str

    @property
    def running(self) -> bool:
        return self.state == "running"


class GuestInventory(ABC):
    """Lookup of the host's guests."""

    @abstractmethod
    def running_guests(self) -> list[GuestInfo]:
        """List every running guest (never the global zone).

        Raises:
            InventoryError: If the inventory could not be read
        """

    @abstractmethod
    def lookup(self, vm_uuid: str) -> GuestInfo | None:
        """Find one guest by UUID; None if no such guest exists.

        Raises:
            InventoryError: If the inventory could not be read
        """


def parse_zoneadm_line(line: str) -> GuestInfo | None:
    """Parse one ``zoneadm list -p`` line; None for the global zone or junk."""
    fields = line.strip().split(":")
    if len(fields) < 5:
        return None
    zoneid, zonename, state = fields[0], fields[1], fields[2]
    zone_uuid = fields[4] or zonename
    # Zones that are not running print "-" for their id.
    if zoneid == "-":
        return GuestInfo(uuid=zonename or zone_uuid, instance_id=-1, state=state)
    try:
        instance_id = int(zoneid)
    except ValueError:
        return None
    if instance_id == GLOBAL_ZONE_ID or zonename == "global":
        return None
    return GuestInfo(uuid=zonename or zone_uuid, instance_id=instance_id, state=state)


def parse_zoneadm_output(content: str) -> list[GuestInfo]:
    """Parse ``zoneadm list -p`` output, skipping the global zone."""
    guests: list[GuestInfo] = []
    for line in content.splitlines():
        if not line.strip():
            continue
        guest = parse_zoneadm_line(line)
        if guest is None:
            continue
        guests.append(guest)
    return guests


class ZoneadmInventory(GuestInventory):
    """GuestInventory backed by ``zoneadm``."""

    def __init__(self, command: Path | str = Path("/usr/sbin/zoneadm"), timeout: float = 10.0) -> None:
        self._command = Path(command)
        self._timeout = timeout

    def running_guests(self) -> list[GuestInfo]:
        try:
            output = run_command([self._command, "list", "-p"], timeout=self._timeout)
        except CommandError as e:
            raise InventoryError(str(e)) from e
        return [g for g in parse_zoneadm_output(output) if g.running]

    def lookup(self, vm_uuid: str) -> GuestInfo | None:
        try:
            output = run_command([self._command, "-z", vm_uuid, "list", "-p"], timeout=self._timeout)
        except CommandError as e:
            if e.returncode == _NO_SUCH_ZONE_EXIT:
                return None
            raise InventoryError(str(e)) from e
        guests = parse_zoneadm_output(output)
        return guests[0] if guests else None


class InstanceResolver:
    """Maps guest UUIDs to zone ids for one collection pass.

    Results are cached for the lifetime of the resolver only; build a new
    resolver per pass.
    """

    def __init__(self, inventory: GuestInventory) -> None:
        self._inventory = inventory
        self._cache: dict[str, GuestInfo] = {}

    def prime(self, guests: list[GuestInfo]) -> None:
        """Seed the cache from an enumeration done earlier in the same pass."""
        for guest in guests:
            self._cache[guest.uuid] = guest

    def resolve(self, vm_uuid: str) -> int:
        """Resolve a guest UUID to its zone id.

        A guest that vanishes between enumeration and lookup makes the
        inventory command fail, so lookup failures also count as not found.

        Raises:
            GuestNotFoundError: If the guest does not exist, is not running
                or could not be looked up
        """
        guest = self._cache.get(vm_uuid)
        if guest is None:
            try:
                guest = self._inventory.lookup(vm_uuid)
            except InventoryError as e:
                logger.warning(f"Lookup of guest {vm_uuid} failed: {e}")
                raise GuestNotFoundError(vm_uuid) from e
        if guest is None or not guest.running or guest.instance_id < 0:
            raise GuestNotFoundError(vm_uuid)
        self._cache[vm_uuid] = guest
        return guest.instance_id
