import pytest

from pybackupgw.triggers import (Channel, PowerFlow, PowerFlowEdge, PowerFlowTriggerEngine, TriggerUsage, describe,
                                 get_power_flow)


@pytest.mark.parametrize("watts, flow", [
    (0, PowerFlow.ZERO),
    (49, PowerFlow.ZERO),
    (-49, PowerFlow.ZERO),
    (49.9, PowerFlow.ZERO),
    (50, PowerFlow.POSITIVE),
    (-50, PowerFlow.NEGATIVE),
    (4200, PowerFlow.POSITIVE),
    (-3100.5, PowerFlow.NEGATIVE),
])
def test_get_power_flow(watts, flow):
    assert get_power_flow(watts) == flow


def readings(battery=0, solar=0, grid=0):
    return {Channel.BATTERY: battery, Channel.SOLAR: solar, Channel.GRID: grid}


@pytest.fixture(name="engine")
def fixture_engine():
    engine = PowerFlowTriggerEngine()
    engine.fired = []
    for edge in PowerFlowEdge:
        engine.subscribe(edge, lambda sub: engine.fired.append(sub.edge))
    return engine


def test_first_cycle_fires_nothing(engine):
    assert engine.update(None, readings(battery=-2000, solar=3000, grid=500)) == []
    assert engine.fired == []


def test_no_event_without_band_change(engine):
    engine.update(readings(battery=-100), readings(battery=-2000))
    engine.update(readings(battery=-2000), readings(battery=-2000))
    assert engine.fired == []


def test_battery_charging_to_idle(engine):
    fired = engine.update(readings(battery=-100), readings(battery=0))
    assert fired == [PowerFlowEdge.BATTERY_IDLE]
    assert engine.fired == [PowerFlowEdge.BATTERY_IDLE]


def test_every_channel_changes(engine):
    engine.update(readings(battery=0, solar=0, grid=0), readings(battery=1500, solar=2500, grid=-800))
    assert engine.fired == [PowerFlowEdge.BATTERY_DISCHARGING, PowerFlowEdge.SOLAR_PRODUCING,
                            PowerFlowEdge.GRID_EXPORTING]


def test_grid_importing_and_back_to_idle(engine):
    engine.update(readings(grid=10), readings(grid=900))
    engine.update(readings(grid=900), readings(grid=-20))
    assert engine.fired == [PowerFlowEdge.GRID_IMPORTING, PowerFlowEdge.GRID_IDLE]


def test_solar_negative_has_no_event(engine):
    assert engine.update(readings(solar=0), readings(solar=-80)) == []
    assert engine.update(readings(solar=-80), readings(solar=0)) == [PowerFlowEdge.SOLAR_IDLE]


def test_subscriptions_called_in_registration_order():
    engine = PowerFlowTriggerEngine()
    calls = []
    first = engine.subscribe(PowerFlowEdge.BATTERY_CHARGING, lambda sub: calls.append(("first", sub.id)))
    engine.subscribe(PowerFlowEdge.BATTERY_IDLE, lambda sub: calls.append(("other", sub.id)))
    second = engine.subscribe(PowerFlowEdge.BATTERY_CHARGING, lambda sub: calls.append(("second", sub.id)))
    assert engine.fire(PowerFlowEdge.BATTERY_CHARGING) == 2
    assert calls == [("first", first.id), ("second", second.id)]

    engine.unsubscribe(first)
    calls.clear()
    engine.update(readings(battery=0), readings(battery=-400))
    assert calls == [("second", second.id)]


def test_is_condition_true():
    engine = PowerFlowTriggerEngine()
    current = readings(battery=-600, solar=30, grid=75)
    assert engine.is_condition_true(PowerFlowEdge.BATTERY_CHARGING, current)
    assert not engine.is_condition_true(PowerFlowEdge.BATTERY_IDLE, current)
    assert engine.is_condition_true(PowerFlowEdge.SOLAR_IDLE, current)
    assert engine.is_condition_true(PowerFlowEdge.GRID_IMPORTING, current)
    assert not engine.is_condition_true(PowerFlowEdge.GRID_IMPORTING, None)


def test_describe():
    assert describe(PowerFlowEdge.BATTERY_CHARGING, TriggerUsage.TRIGGER) == "Tesla: Powerwall begins charging"
    assert describe(PowerFlowEdge.BATTERY_CHARGING, TriggerUsage.CONDITION) == "Tesla: Powerwall is charging"
    assert describe(PowerFlowEdge.BATTERY_CHARGING) == "Tesla: Powerwall begins/is charging"
    assert describe(PowerFlowEdge.GRID_IDLE) == "Tesla: Grid becomes/is idle"


def test_describe_uses_resolver():
    engine = PowerFlowTriggerEngine(usage_resolver=lambda sub: TriggerUsage.CONDITION)
    sub = engine.subscribe(PowerFlowEdge.SOLAR_PRODUCING, lambda s: None)
    assert engine.describe(sub) == "Tesla: Solar is producing"
    assert PowerFlowTriggerEngine().usage(sub) == TriggerUsage.UNKNOWN
