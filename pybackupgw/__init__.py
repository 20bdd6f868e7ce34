# pyBackupGW Module
# -*- coding: utf-8 -*-
"""
 Python module to monitor a Tesla Backup Gateway over its local HTTPS API

 For more information see README.md

 Features
    * Logs in with customer credentials only when the gateway asks for it (403)
    * Re-uses the HTTPS connection and session cookie between requests
    * Reports when the gateway is reached through a relay (certificate CN)
    * Polls site status, charge, grid status and power meters on a timer
    * Hides transient poll errors until several cycles in a row have failed
    * Fires power-flow events when battery, solar or grid changes direction
    * Reconnects on its own after failures and configuration changes

 Classes
    GatewayClient(host, port, email, password, timeout, executor)
    GatewaySupervisor(config_store, directory, engine, scheduler, client_factory,
        timeout, poll_interval, retry_interval, debounce, failure_threshold)
    TelemetryPoller(client, directory, refs, engine, scheduler, interval, failure_threshold,
        lock, on_status, on_hard_failure)
    PowerFlowTriggerEngine(threshold, usage_resolver)
    Settings()                # GW_* environment variables
    MemoryConfigStore(config)
    EnvFileConfigStore(path)
    MemoryDeviceDirectory()

 Functions
    set_debug(toggle, color)  # Enable verbose logging
    describe(edge, usage)     # Human readable name of a power-flow edge
    get_power_flow(watts)     # Classify a reading as NEGATIVE, ZERO or POSITIVE

 Requirements
    This module requires the following modules: requests, cryptography, pydantic,
    pydantic-settings, python-dotenv, python-dateutil
    pip install pybackupgw
"""
import logging
import sys

version_tuple = (0, 1, 0)
version = __version__ = '%d.%d.%d' % version_tuple
__author__ = 'pybackupgw'

from pybackupgw.client import GatewayClient
from pybackupgw.config import EnvFileConfigStore, GatewayConfig, MemoryConfigStore, Settings
from pybackupgw.directory import DeviceDirectory, DeviceRefSet, MemoryDeviceDirectory
from pybackupgw.exceptions import GatewayError
from pybackupgw.poller import InterfaceStatus, TelemetryPoller
from pybackupgw.supervisor import ConnectionState, GatewaySupervisor
from pybackupgw.triggers import PowerFlow, PowerFlowEdge, PowerFlowTriggerEngine, describe, get_power_flow

log = logging.getLogger(__name__)
log.debug('%s version %s', __name__, __version__)
log.debug('Python %s on %s', sys.version, sys.platform)


def set_debug(toggle=True, color=True):
    """Enable verbose logging"""
    if toggle:
        if color:
            logging.basicConfig(format='\x1b[31;1m%(levelname)s:%(message)s\x1b[0m', level=logging.DEBUG)
        else:
            logging.basicConfig(format='%(levelname)s:%(message)s', level=logging.DEBUG)
        log.setLevel(logging.DEBUG)
        log.debug("%s [%s]\n" % (__name__, __version__))
    else:
        log.setLevel(logging.NOTSET)
