# pyBackupGW Module - Device Directory
# -*- coding: utf-8 -*-
"""Device directory collaborator.

The home-automation hub owns the persistent entities that represent the site
and its channels. The core only asks for their references once per connection
and then writes values and strings against them.
"""
import abc
import itertools
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

log = logging.getLogger(__name__)

ADDRESS_PREFIX = "TGW"

# Channel address suffixes, root entity has none
SUFFIX_SYSTEM_STATUS = "SystemStatus"
SUFFIX_CONNECTED = "Connected"
SUFFIX_GRID_STATUS = "GridStatus"
SUFFIX_CHARGE = "Charge"
SUFFIX_SITE_POWER = "SitePower"
SUFFIX_BATTERY_POWER = "BatteryPower"
SUFFIX_SOLAR_POWER = "SolarPower"
SUFFIX_GRID_POWER = "GridPower"

CHANNEL_NAMES = {
    SUFFIX_SYSTEM_STATUS: "System Status",
    SUFFIX_CONNECTED: "Tesla Connection",
    SUFFIX_GRID_STATUS: "Grid Status",
    SUFFIX_CHARGE: "Powerwall Charge",
    SUFFIX_SITE_POWER: "Total Site Power",
    SUFFIX_BATTERY_POWER: "Powerwall Power",
    SUFFIX_SOLAR_POWER: "Solar Power",
    SUFFIX_GRID_POWER: "Grid Power",
}


def address_base(address: str) -> str:
    return f"{ADDRESS_PREFIX}:{address}"


@dataclass(frozen=True)
class DeviceRefSet:
    root: int
    system_status: int
    connected_to_tesla: int
    grid_status: int
    charge_percent: int
    site_power: int
    battery_power: int
    solar_power: int
    grid_power: int


class DeviceDirectory(abc.ABC):

    @abc.abstractmethod
    def ensure_devices(self, address_base: str, site_name: str) -> DeviceRefSet:
        """Find or create the site entity and its channels. Must be idempotent."""
        raise NotImplementedError

    @abc.abstractmethod
    def set_value(self, ref: int, value: Union[int, float]) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def set_string(self, ref: int, text: str) -> None:
        raise NotImplementedError


class MemoryDeviceDirectory(DeviceDirectory):
    """In-process directory: references are allocated per address and values are kept in dicts"""

    def __init__(self):
        self._refs = itertools.count(1)
        self.addresses: Dict[str, int] = {}
        self.names: Dict[int, str] = {}
        self.values: Dict[int, Union[int, float]] = {}
        self.strings: Dict[int, str] = {}

    def _ensure(self, address: str, name: str) -> int:
        ref = self.addresses.get(address)
        if ref is None:
            ref = next(self._refs)
            self.addresses[address] = ref
            self.names[ref] = name
            log.info(f"Created device {ref} for {address} ({name})")
        return ref

    def ensure_devices(self, address_base: str, site_name: str) -> DeviceRefSet:
        def channel(suffix):
            return self._ensure(f"{address_base}:{suffix}", CHANNEL_NAMES[suffix])

        return DeviceRefSet(
            root=self._ensure(address_base, site_name),
            system_status=channel(SUFFIX_SYSTEM_STATUS),
            connected_to_tesla=channel(SUFFIX_CONNECTED),
            grid_status=channel(SUFFIX_GRID_STATUS),
            charge_percent=channel(SUFFIX_CHARGE),
            site_power=channel(SUFFIX_SITE_POWER),
            battery_power=channel(SUFFIX_BATTERY_POWER),
            solar_power=channel(SUFFIX_SOLAR_POWER),
            grid_power=channel(SUFFIX_GRID_POWER),
        )

    def set_value(self, ref: int, value: Union[int, float]) -> None:
        log.debug(f"{self.names.get(ref, ref)} = {value}")
        self.values[ref] = value

    def set_string(self, ref: int, text: str) -> None:
        self.strings[ref] = text

    def value_of(self, address: str) -> Optional[Union[int, float]]:
        ref = self.addresses.get(address)
        return None if ref is None else self.values.get(ref)
