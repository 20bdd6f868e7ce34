# pyBackupGW Module - Reconnect Supervisor
# -*- coding: utf-8 -*-
"""
 Connection state machine for a single gateway

 States:
    DISCONNECTED -> CONNECTING -> CONNECTED
                    CONNECTING -> FATAL
    FATAL        -> CONNECTING   (retry timer or reconfiguration)
    CONNECTED    -> CONNECTING   (hard poll failure or reconfiguration)

 Every attempt starts from a fresh GatewayClient built from the current
 configuration. The site info call is the initial contact; once it succeeds
 the device references are resolved and a TelemetryPoller is started. A failed
 contact arms a retry timer. An invalid address is fatal until the
 configuration changes.

 All timer callbacks (retry, reconfiguration debounce, poll) run on the event
 loop and take the same lock, so they never interleave for one gateway.
"""
import asyncio
import enum
import logging
from typing import Callable, Optional

from pybackupgw.client import GatewayClient, REQUEST_TIMEOUT
from pybackupgw.config import ConfigStore, MemoryConfigStore, Settings
from pybackupgw.directory import DeviceDirectory, DeviceRefSet, address_base
from pybackupgw.exceptions import ConfigInvalid, ConnectFailed, GatewayError, innermost_message
from pybackupgw.models import SiteInfo
from pybackupgw.poller import FAILURE_THRESHOLD, POLL_INTERVAL, InterfaceStatus, TelemetryPoller
from pybackupgw.regex import is_valid_ipv4
from pybackupgw.scheduler import ScheduledCall, Scheduler
from pybackupgw.triggers import PowerFlowEdge, PowerFlowTriggerEngine

log = logging.getLogger(__name__)

RETRY_INTERVAL = 60.0
DEBOUNCE = 0.5


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FATAL = "fatal"


class GatewaySupervisor:

    def __init__(self, config_store: ConfigStore, directory: DeviceDirectory,
                 engine: Optional[PowerFlowTriggerEngine] = None, scheduler: Optional[Scheduler] = None,
                 client_factory: Callable[..., GatewayClient] = GatewayClient, timeout: float = REQUEST_TIMEOUT,
                 poll_interval: float = POLL_INTERVAL, retry_interval: float = RETRY_INTERVAL,
                 debounce: float = DEBOUNCE, failure_threshold: int = FAILURE_THRESHOLD):
        """
        Args:
            config_store      = source of the gateway address, port and credentials
            directory         = device directory collaborator
            engine            = power-flow trigger engine (a new one if None)
            scheduler         = scheduler for all timers (a private one if None)
            client_factory    = callable building a client from (host, port, email, password, timeout=)
            timeout           = per-request timeout in seconds
            poll_interval     = seconds between poll cycles
            retry_interval    = seconds before retrying a failed initial contact
            debounce          = seconds to collapse reconfiguration events
            failure_threshold = consecutive poll failures before the error is shown
        """
        self.config_store = config_store
        self.directory = directory
        self.engine = engine or PowerFlowTriggerEngine()
        self._owns_scheduler = scheduler is None
        self.scheduler = scheduler or Scheduler()
        self.client_factory = client_factory
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.debounce = debounce
        self.failure_threshold = failure_threshold

        self.state = ConnectionState.DISCONNECTED
        self.reason = ""
        self.status = InterfaceStatus.OK
        self.status_message = ""
        self.last_error: Optional[GatewayError] = None
        self.attempts = 0

        self.client: Optional[GatewayClient] = None
        self.poller: Optional[TelemetryPoller] = None
        self.site_info: Optional[SiteInfo] = None
        self.refs: Optional[DeviceRefSet] = None
        self.address_base: Optional[str] = None

        self._lock = asyncio.Lock()
        self._connecting = False
        self._reconnect_requested = False
        self._retry_timer: Optional[ScheduledCall] = None
        self._debounce_timer: Optional[ScheduledCall] = None

    @classmethod
    def from_settings(cls, settings: Settings, directory: DeviceDirectory,
                      engine: Optional[PowerFlowTriggerEngine] = None,
                      config_store: Optional[ConfigStore] = None, **kwargs) -> "GatewaySupervisor":
        return cls(config_store or MemoryConfigStore.from_settings(settings), directory, engine=engine,
                   timeout=settings.timeout, poll_interval=settings.poll_interval,
                   retry_interval=settings.retry_interval, debounce=settings.debounce,
                   failure_threshold=settings.failure_threshold, **kwargs)

    # Public interface

    async def start(self) -> bool:
        return await self.connect()

    async def stop(self) -> None:
        self._cancel_timers()
        async with self._lock:
            self._stop_polling()
            self._discard_client()
            self._set_state(ConnectionState.DISCONNECTED)
        if self._owns_scheduler:
            await self.scheduler.shutdown()

    def reconfigure(self, **changes) -> None:
        """
        Apply configuration changes and reconnect once the edits settle.

        Several calls within `debounce` seconds result in a single attempt
        that uses the final configuration.
        """
        if changes:
            self.config_store.update(**changes)
        if self._debounce_timer:
            self._debounce_timer.cancel()
        self._debounce_timer = self.scheduler.call_later(self.debounce, self.connect, name="reconfigure")

    async def connect(self) -> bool:
        if self._connecting:
            log.debug("Suppressing connection attempt because one is already in progress")
            self._reconnect_requested = True
            return False
        self._connecting = True
        try:
            async with self._lock:
                connected = await self._attempt()
        finally:
            self._connecting = False
        if self._reconnect_requested:
            self._reconnect_requested = False
            self.scheduler.call_later(0, self.connect, name="reconnect")
        return connected

    def is_condition_true(self, edge: PowerFlowEdge) -> bool:
        readings = self.poller.previous_power if self.poller else None
        return self.engine.is_condition_true(edge, readings)

    # State machine

    async def _attempt(self) -> bool:
        if self._retry_timer:
            self._retry_timer.cancel()
            self._retry_timer = None
        self._stop_polling()
        self._discard_client()
        self.attempts += 1
        self._set_state(ConnectionState.CONNECTING)

        config = self.config_store.load()
        log.info(f'Attempting to connect to Gateway at IP "{config.host}"')
        if not is_valid_ipv4(config.host):
            # Fatal until reconfigured, no retry timer
            self._fatal(ConfigInvalid("No endpoint configured"))
            return False

        client = self.client_factory(config.host, config.port, config.email, config.password, timeout=self.timeout)
        try:
            info = await client.get_site_info()
        except GatewayError as exc:
            client.close()
            reason = innermost_message(exc)
            log.error(f"Cannot get site info from Gateway {config.host}: {reason}")
            error = ConnectFailed(reason)
            error.__cause__ = exc
            self._fatal(error)
            self._retry_timer = self.scheduler.call_later(self.retry_interval, self.connect, name="retry")
            return False

        self.client = client
        self.site_info = info
        self.address_base = address_base(client.upstream_identity or config.host)
        self.refs = self.directory.ensure_devices(self.address_base, info.site_name)
        self._set_state(ConnectionState.CONNECTED)
        self._set_status(InterfaceStatus.OK, "")
        log.info(f'Successfully contacted Gateway "{info.site_name}" at IP {config.host}')

        self.poller = TelemetryPoller(client, self.directory, self.refs, self.engine, self.scheduler,
                                      interval=self.poll_interval, failure_threshold=self.failure_threshold,
                                      lock=self._lock, on_status=self._set_status,
                                      on_hard_failure=self._on_hard_failure)
        self.poller.start()
        return True

    def _fatal(self, error: GatewayError) -> None:
        self.last_error = error
        self.reason = str(error)
        self._set_state(ConnectionState.FATAL)
        self._set_status(InterfaceStatus.FATAL, self.reason)

    def _on_hard_failure(self, exc: GatewayError) -> None:
        log.warning(f"Gateway session is no longer usable ({exc}) - reconnecting")
        self.last_error = exc
        self.scheduler.call_later(0, self.connect, name="reconnect")

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            log.debug(f"Gateway connection {self.state.value} -> {state.value}")
            self.state = state
        if state != ConnectionState.FATAL:
            self.reason = ""

    def _set_status(self, status: InterfaceStatus, message: str) -> None:
        self.status = status
        self.status_message = message

    def _stop_polling(self) -> None:
        if self.poller:
            self.poller.stop()
            self.poller = None

    def _discard_client(self) -> None:
        if self.client:
            self.client.close()
            self.client = None

    def _cancel_timers(self) -> None:
        for timer in (self._retry_timer, self._debounce_timer):
            if timer:
                timer.cancel()
        self._retry_timer = self._debounce_timer = None
