# pyBackupGW Module - Models
# -*- coding: utf-8 -*-
"""Pydantic models for gateway telemetry.

Every JSON body returned by the gateway is decoded into one of these frozen
records at the client boundary; nothing untyped is handed to the poller.

Power sign conventions (watts):
    - site: positive = importing from the grid, negative = exporting
    - battery: positive = discharging, negative = charging
    - solar: positive = producing
    - load: home consumption
"""
from datetime import datetime
from typing import Optional

from dateutil.parser import isoparse
from pydantic import BaseModel, ConfigDict, Field

GRID_CONNECTED = "SystemGridConnected"
EPOCH_TIMESTAMP = "1970-01-01T00:00:00.000Z"


class GatewayRecord(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class SiteInfo(GatewayRecord):
    """Response of /api/site_info/site_name"""
    site_name: str
    timezone: Optional[str] = None


class SiteMaster(GatewayRecord):
    """Response of /api/sitemaster"""
    status: Optional[str] = None
    running: bool
    connected_to_tesla: bool


class MeterReading(GatewayRecord):
    """One meter entry of /api/meters/aggregates.

    Only instant_power is used for power-flow detection; the remaining fields
    are carried through unmodified.
    """
    last_communication_time: str = EPOCH_TIMESTAMP
    instant_power: float
    instant_reactive_power: float = 0.0
    instant_apparent_power: float = 0.0
    frequency: float = 0.0
    energy_exported: float = 0.0
    energy_imported: float = 0.0
    instant_average_voltage: float = 0.0
    instant_total_current: float = 0.0

    @classmethod
    def blank(cls) -> "MeterReading":
        return cls(instant_power=0.0)

    @property
    def last_communication(self) -> Optional[datetime]:
        try:
            return isoparse(self.last_communication_time)
        except (ValueError, TypeError):
            return None


class Aggregates(GatewayRecord):
    """Four-channel power report. Gateways without solar omit that meter."""
    site: MeterReading
    battery: MeterReading
    load: MeterReading
    solar: MeterReading = Field(default_factory=MeterReading.blank)


class GridStatus(GatewayRecord):
    grid_status: str
    grid_services_active: bool = False

    @property
    def connected(self) -> bool:
        return self.grid_status == GRID_CONNECTED


class StateOfEnergy(GatewayRecord):
    percentage: float


class OperationConfig(GatewayRecord):
    real_mode: str
    backup_reserve_percent: float


class TelemetrySnapshot(GatewayRecord):
    """Everything one successful poll cycle learned about the site.

    Attributes:
        running: site master reports the system running
        connected_to_tesla: site master reports cloud connectivity
        grid_connected: grid status is SystemGridConnected
        charge_percent: raw state of energy percentage
        site_power: home consumption (the gateway's "load" meter)
        battery_power: battery meter
        solar_power: solar meter
        grid_power: grid meter (the gateway's "site" meter)
    """
    running: bool
    connected_to_tesla: bool
    grid_connected: bool
    charge_percent: float
    site_power: MeterReading
    battery_power: MeterReading
    solar_power: MeterReading
    grid_power: MeterReading

    @classmethod
    def from_readings(cls, site_master: SiteMaster, aggregates: Aggregates, grid_status: GridStatus,
                      charge: StateOfEnergy) -> "TelemetrySnapshot":
        return cls(
            running=site_master.running,
            connected_to_tesla=site_master.connected_to_tesla,
            grid_connected=grid_status.connected,
            charge_percent=charge.percentage,
            site_power=aggregates.load,
            battery_power=aggregates.battery,
            solar_power=aggregates.solar,
            grid_power=aggregates.site,
        )
