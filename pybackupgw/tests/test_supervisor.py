"""Tests for the reconnect state machine."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from pybackupgw.config import GatewayConfig, MemoryConfigStore
from pybackupgw.directory import MemoryDeviceDirectory
from pybackupgw.exceptions import AuthorizationFailed, GatewayConnectionError
from pybackupgw.models import SiteInfo, SiteMaster
from pybackupgw.poller import InterfaceStatus
from pybackupgw.supervisor import ConnectionState, GatewaySupervisor
from pybackupgw.triggers import PowerFlowEdge


class FakeClient:
    def __init__(self, host, port, email, password, timeout=5):
        self.host = host
        self.port = port
        self.email = email
        self.password = password
        self.timeout = timeout
        self.upstream_identity = None
        self.closed = False
        self.get_site_info = AsyncMock(return_value=SiteInfo(site_name="Home"))
        self.get_site_master = AsyncMock(return_value=SiteMaster(running=False, connected_to_tesla=True))

    def close(self):
        self.closed = True


class ClientFactory:
    """Builds FakeClients and remembers them; `prepare` customises the next ones"""

    def __init__(self, prepare=None):
        self.created = []
        self.prepare = prepare

    def __call__(self, *args, **kwargs):
        client = FakeClient(*args, **kwargs)
        if self.prepare:
            self.prepare(client)
        self.created.append(client)
        return client

    @property
    def hosts(self):
        return [client.host for client in self.created]


def make_supervisor(host="10.0.1.20", factory=None, **kwargs):
    store = MemoryConfigStore(GatewayConfig(host=host, email="me@example.com", password="secret"))
    factory = factory or ClientFactory()
    options = dict(poll_interval=1.0, retry_interval=0.05, debounce=0.05)
    options.update(kwargs)
    supervisor = GatewaySupervisor(store, MemoryDeviceDirectory(), client_factory=factory, **options)
    return supervisor, factory


@pytest.mark.asyncio
async def test_invalid_address_is_fatal_without_retry():
    supervisor, factory = make_supervisor(host="gateway.local")
    assert await supervisor.start() is False
    assert supervisor.state == ConnectionState.FATAL
    assert supervisor.reason == "No endpoint configured"
    assert supervisor.status == InterfaceStatus.FATAL
    assert factory.created == []
    assert supervisor._retry_timer is None
    await asyncio.sleep(0.1)
    assert factory.created == []
    await supervisor.stop()


@pytest.mark.asyncio
async def test_failed_contact_reports_innermost_reason_and_retries():
    error = GatewayConnectionError("Unable to connect to gateway")
    error.__cause__ = OSError("No route to host")

    def unreachable(client):
        client.get_site_info.side_effect = error

    supervisor, factory = make_supervisor(factory=ClientFactory(unreachable))
    assert await supervisor.start() is False
    assert supervisor.state == ConnectionState.FATAL
    assert supervisor.reason == "No route to host"
    assert supervisor.status_message == "No route to host"
    assert factory.created[0].closed
    await asyncio.sleep(0.12)
    assert len(factory.created) >= 2
    await supervisor.stop()


@pytest.mark.asyncio
async def test_successful_contact_starts_polling():
    supervisor, factory = make_supervisor()
    assert await supervisor.start() is True
    assert supervisor.state == ConnectionState.CONNECTED
    assert supervisor.status == InterfaceStatus.OK
    assert supervisor.address_base == "TGW:10.0.1.20"
    assert supervisor.refs.root == supervisor.directory.addresses["TGW:10.0.1.20"]
    assert supervisor.directory.names[supervisor.refs.root] == "Home"
    assert supervisor.poller.running
    assert factory.created[0].email == "me@example.com"
    await supervisor.stop()
    assert supervisor.state == ConnectionState.DISCONNECTED
    assert supervisor.poller is None
    assert factory.created[0].closed


@pytest.mark.asyncio
async def test_relay_identity_names_the_devices():
    def relayed(client):
        client.upstream_identity = "192.168.5.10"

    supervisor, _ = make_supervisor(factory=ClientFactory(relayed))
    await supervisor.start()
    assert supervisor.address_base == "TGW:192.168.5.10"
    await supervisor.stop()


@pytest.mark.asyncio
async def test_reconfigure_is_debounced():
    supervisor, factory = make_supervisor()
    await supervisor.start()
    supervisor.reconfigure(host="10.0.1.21")
    await asyncio.sleep(0.01)
    supervisor.reconfigure(host="10.0.1.22")
    await asyncio.sleep(0.2)
    assert factory.hosts == ["10.0.1.20", "10.0.1.22"]
    assert factory.created[0].closed
    assert supervisor.address_base == "TGW:10.0.1.22"
    await supervisor.stop()


@pytest.mark.asyncio
async def test_overlapping_connect_is_deferred():
    release = asyncio.Event()

    async def slow_site_info():
        await release.wait()
        return SiteInfo(site_name="Home")

    def slow(client):
        client.get_site_info.side_effect = slow_site_info

    supervisor, factory = make_supervisor(factory=ClientFactory(slow))
    first = asyncio.ensure_future(supervisor.connect())
    await asyncio.sleep(0.01)
    assert supervisor.state == ConnectionState.CONNECTING
    assert await supervisor.connect() is False
    assert len(factory.created) == 1
    release.set()
    assert await first is True
    await asyncio.sleep(0.05)
    assert len(factory.created) == 2
    assert supervisor.state == ConnectionState.CONNECTED
    await supervisor.stop()


@pytest.mark.asyncio
async def test_hard_poll_failure_reconnects():
    supervisor, factory = make_supervisor()
    await supervisor.start()
    supervisor._on_hard_failure(AuthorizationFailed("forbidden", 403, "/sitemaster"))
    await asyncio.sleep(0.05)
    assert len(factory.created) == 2
    assert factory.created[0].closed
    assert supervisor.state == ConnectionState.CONNECTED
    await supervisor.stop()


@pytest.mark.asyncio
async def test_condition_without_readings():
    supervisor, _ = make_supervisor()
    assert supervisor.is_condition_true(PowerFlowEdge.GRID_IDLE) is False
    await supervisor.stop()
