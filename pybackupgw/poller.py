# pyBackupGW Module - Telemetry Poller
# -*- coding: utf-8 -*-
"""
 Repeating fetch-and-publish cycle for a connected gateway

 Cycle:
    1. sitemaster alone - a failure ends the cycle (no other endpoint is queried)
    2. publish running / tesla connectivity - a stopped site ends the cycle
    3. aggregates, grid status and state of energy - any failure ends the cycle
    4. publish charge, grid status and the four power channels, run the
       power-flow trigger engine against the previous cycle's readings
    5. schedule the next cycle `interval` seconds after this one finished

 Failed cycles are counted. The error only becomes visible after
 `failure_threshold` consecutive failures and is cleared by the next
 successful cycle.
"""
import asyncio
import enum
import logging
from typing import Callable, Dict, Optional

from pybackupgw.directory import DeviceDirectory, DeviceRefSet
from pybackupgw.exceptions import AuthorizationFailed, GatewayError, PollFailed
from pybackupgw.models import MeterReading, StateOfEnergy, TelemetrySnapshot
from pybackupgw.scheduler import ScheduledCall, Scheduler
from pybackupgw.triggers import Channel, PowerFlowTriggerEngine

log = logging.getLogger(__name__)

POLL_INTERVAL = 2.0
FAILURE_THRESHOLD = 5


class InterfaceStatus(enum.IntEnum):
    OK = 0
    WARNING = 1
    CRITICAL = 2
    FATAL = 3


def format_power(watts: float) -> str:
    return f"{round(watts / 1000, 1)} kW"


class TelemetryPoller:

    def __init__(self, client, directory: DeviceDirectory, refs: DeviceRefSet, engine: PowerFlowTriggerEngine,
                 scheduler: Scheduler, interval: float = POLL_INTERVAL, failure_threshold: int = FAILURE_THRESHOLD,
                 lock: Optional[asyncio.Lock] = None,
                 on_status: Optional[Callable[[InterfaceStatus, str], None]] = None,
                 on_hard_failure: Optional[Callable[[GatewayError], None]] = None):
        """
        Args:
            client            = connected GatewayClient
            directory         = device directory to publish into
            refs              = references returned by directory.ensure_devices()
            engine            = power-flow trigger engine
            scheduler         = scheduler used for the poll timer
            interval          = seconds between cycles
            failure_threshold = consecutive failures before the error is reported
            lock              = lock shared with the supervisor, held for a whole cycle
            on_status         = called with (status, message) when the error appears or clears
            on_hard_failure   = called when the session can no longer be used
        """
        self.client = client
        self.directory = directory
        self.refs = refs
        self.engine = engine
        self.scheduler = scheduler
        self.interval = interval
        self.failure_threshold = failure_threshold
        self.on_status = on_status
        self.on_hard_failure = on_hard_failure
        self.failures = 0
        self.error_visible = False
        self.previous_power: Optional[Dict[Channel, int]] = None
        self.last_snapshot: Optional[TelemetrySnapshot] = None
        self.last_error: Optional[PollFailed] = None
        self._lock = lock or asyncio.Lock()
        self._timer: Optional[ScheduledCall] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        self._running = True
        self._reschedule()

    def stop(self) -> None:
        self._running = False
        if self._timer:
            self._timer.cancel()
            self._timer = None

    def _reschedule(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None
        if self._running:
            self._timer = self.scheduler.call_later(self.interval, self._tick, name="poll")

    async def _tick(self) -> None:
        try:
            async with self._lock:
                if self._running:
                    await self.run_cycle()
        finally:
            self._reschedule()

    async def run_cycle(self) -> bool:
        """Run one poll cycle. Returns True only when every step succeeded."""
        log.debug("Retrieving gateway data")
        try:
            site_master = await self.client.get_site_master()
        except GatewayError as exc:
            self._record_failure(exc)
            return False

        self.directory.set_value(self.refs.system_status, 1 if site_master.running else 0)
        self.directory.set_value(self.refs.connected_to_tesla, 1 if site_master.connected_to_tesla else 0)
        if not site_master.running:
            log.debug("Site is not running - skipping statistics")
            # Power flow edges restart from scratch once the site runs again
            self.previous_power = None
            return False

        try:
            aggregates = await self.client.get_aggregates()
            grid_status = await self.client.get_grid_status()
            charge = await self.client.get_charge_percentage()
        except GatewayError as exc:
            self._record_failure(exc)
            return False

        snapshot = TelemetrySnapshot.from_readings(site_master, aggregates, grid_status,
                                                   StateOfEnergy(percentage=charge))
        log.debug("Gateway data retrieved successfully")
        self._record_success()
        self.publish(snapshot)
        return True

    def publish(self, snapshot: TelemetrySnapshot) -> None:
        self.directory.set_value(self.refs.charge_percent, round(snapshot.charge_percent, 1))
        self.directory.set_value(self.refs.grid_status, 1 if snapshot.grid_connected else 0)

        current = {
            Channel.BATTERY: self._publish_power(self.refs.battery_power, snapshot.battery_power),
            Channel.SOLAR: self._publish_power(self.refs.solar_power, snapshot.solar_power),
            Channel.GRID: self._publish_power(self.refs.grid_power, snapshot.grid_power),
        }
        self._publish_power(self.refs.site_power, snapshot.site_power)

        self.engine.update(self.previous_power, current)
        self.previous_power = current
        self.last_snapshot = snapshot

    def _publish_power(self, ref: int, reading: MeterReading) -> int:
        watts = round(reading.instant_power)
        self.directory.set_value(ref, watts)
        self.directory.set_string(ref, format_power(reading.instant_power))
        return watts

    def _record_failure(self, exc: GatewayError) -> None:
        self.failures += 1
        error = self.last_error = PollFailed(f"Unable to retrieve gateway data: {exc}")
        log.warning(f"{error} (failure {self.failures})")
        if self.failures >= self.failure_threshold:
            if not self.error_visible:
                self.error_visible = True
                log.error(f"{self.failures} consecutive poll failures - {error}")
            if self.on_status:
                self.on_status(InterfaceStatus.CRITICAL, str(error))
        if isinstance(exc, AuthorizationFailed) and self.on_hard_failure:
            self.on_hard_failure(exc)

    def _record_success(self) -> None:
        self.failures = 0
        if self.error_visible:
            self.error_visible = False
            log.info("Gateway data retrieval recovered")
            if self.on_status:
                self.on_status(InterfaceStatus.OK, "")
