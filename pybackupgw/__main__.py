# pyBackupGW Module - Command Line
# -*- coding: utf-8 -*-
"""
 Python module to monitor a Tesla Backup Gateway

 Command Line:
    python -m pybackupgw [-host HOST] [-port PORT] [-email EMAIL] [-password PASSWORD] [-debug] <get|monitor|version>

 Defaults for the connection options come from the GW_* environment variables
 (a .env file in the current directory is loaded first).
"""

import argparse
import asyncio
import json
import sys

import dotenv

# Modules
from pybackupgw import version, set_debug
from pybackupgw.client import GatewayClient
from pybackupgw.config import MemoryConfigStore, Settings
from pybackupgw.directory import MemoryDeviceDirectory
from pybackupgw.exceptions import GatewayError
from pybackupgw.models import TelemetrySnapshot, StateOfEnergy
from pybackupgw.supervisor import GatewaySupervisor
from pybackupgw.triggers import PowerFlowEdge, PowerFlowTriggerEngine

dotenv.load_dotenv()
settings = Settings()

# Setup parser and groups
p = argparse.ArgumentParser(prog="pyBackupGW", description=f"pyBackupGW Module v{version}")
subparsers = p.add_subparsers(dest="command", title='commands (run <command> -h to see usage information)',
                              required=True)

get_args = subparsers.add_parser("get", help='Get site information and one set of power readings')
get_args.add_argument("-format", type=str, default="text", help="Output format: text or json")

monitor_args = subparsers.add_parser("monitor", help='Poll the gateway and report power flow changes')

version_args = subparsers.add_parser("version", help='Print version information')

# Global connection options
p.add_argument("-host", type=str, default=settings.host, help="IP address of the Backup Gateway")
p.add_argument("-port", type=int, default=settings.port, help=f"HTTPS port [Default={settings.port}]")
p.add_argument("-email", type=str, default=settings.email, help="Customer email for gateway login")
p.add_argument("-password", type=str, default=settings.password, help="Customer password for gateway login")
p.add_argument("-debug", action="store_true", default=settings.debug, help="Enable debug output")

if len(sys.argv) == 1:
    p.print_help(sys.stderr)
    sys.exit(1)


class ConsoleDeviceDirectory(MemoryDeviceDirectory):
    """Prints every published value as it changes"""

    def set_value(self, ref, value):
        if self.values.get(ref) != value and ref not in self.strings:
            print("  {:<18}{}".format(self.names.get(ref, ref), value))
        super().set_value(ref, value)

    def set_string(self, ref, text):
        if self.strings.get(ref) != text:
            print("  {:<18}{} ({} W)".format(self.names.get(ref, ref), text, self.values.get(ref)))
        super().set_string(ref, text)


async def get_readings(host, port, email, password):
    client = GatewayClient(host, port, email, password, timeout=settings.timeout)
    try:
        info = await client.get_site_info()
        site_master = await client.get_site_master()
        aggregates = await client.get_aggregates()
        grid_status = await client.get_grid_status()
        charge = await client.get_charge_percentage()
        operation = await client.get_operation_config()
    finally:
        client.close()
    snapshot = TelemetrySnapshot.from_readings(site_master, aggregates, grid_status, StateOfEnergy(percentage=charge))
    return {
        'site': info.site_name,
        'relay_for': client.upstream_identity or "N/A",
        'running': snapshot.running,
        'connected_to_tesla': snapshot.connected_to_tesla,
        'grid_connected': snapshot.grid_connected,
        'charge': round(snapshot.charge_percent, 1),
        'mode': operation.real_mode,
        'reserve': operation.backup_reserve_percent,
        'site_power': round(snapshot.site_power.instant_power),
        'battery_power': round(snapshot.battery_power.instant_power),
        'solar_power': round(snapshot.solar_power.instant_power),
        'grid_power': round(snapshot.grid_power.instant_power),
    }


async def monitor(config_store):
    engine = PowerFlowTriggerEngine()
    for edge in PowerFlowEdge:
        engine.subscribe(edge, lambda sub: print(f"* {engine.describe(sub)}"))
    supervisor = GatewaySupervisor.from_settings(settings, ConsoleDeviceDirectory(), engine=engine,
                                                 config_store=config_store)
    await supervisor.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await supervisor.stop()


# parse args
args = p.parse_args()
command = args.command

# Set Debug Mode
if args.debug:
    set_debug(True)

# Get Readings
if command == 'get':
    if args.format == 'text':
        print(f"pyBackupGW [{version}] - Get Site Information and Power Levels from {args.host}\n")
    try:
        output = asyncio.run(get_readings(args.host, args.port, args.email, args.password))
    except GatewayError as exc:
        print(f"ERROR: Unable to read gateway at {args.host}: {exc}")
        sys.exit(1)
    if args.format == 'json':
        print(json.dumps(output, indent=2))
    else:
        # Table Output
        for item in output:
            name = item.replace("_", " ").title()
            print("  {:<20}{}".format(name, output[item]))
        print("")

# Monitor
elif command == 'monitor':
    print(f"pyBackupGW [{version}] - Monitoring {args.host} (Ctrl-C to stop)\n")
    store = MemoryConfigStore.from_settings(settings)
    store.update(host=args.host, port=args.port, email=args.email, password=args.password)
    try:
        asyncio.run(monitor(store))
    except KeyboardInterrupt:
        print("\nStopped.")

# Print Version
elif command == 'version':
    print("pyBackupGW [%s]" % version)
# Print Usage
else:
    p.print_help()
