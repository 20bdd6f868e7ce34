# pyBackupGW Module - Power Flow Triggers
# -*- coding: utf-8 -*-
"""
 Power-flow classification and edge-triggered events

 A reading is banded into NEGATIVE / ZERO / POSITIVE against a fixed
 threshold (POWER_FLOW_THRESHOLD watts) so that sensor noise around zero does
 not cause trigger chatter. An event fires only when the band of a monitored
 channel changes between two consecutive poll cycles.

    Channel   NEGATIVE     ZERO   POSITIVE
    battery   Charging     Idle   Discharging
    solar     -            Idle   Producing
    grid      Exporting    Idle   Importing
"""
import enum
import itertools
import logging
from typing import Callable, Dict, List, Mapping, Optional

log = logging.getLogger(__name__)

POWER_FLOW_THRESHOLD = 50


class PowerFlow(enum.Enum):
    NEGATIVE = -1
    ZERO = 0
    POSITIVE = 1


class Channel(str, enum.Enum):
    BATTERY = "battery"
    SOLAR = "solar"
    GRID = "grid"


class PowerFlowEdge(enum.IntEnum):
    BATTERY_CHARGING = 0
    BATTERY_DISCHARGING = 1
    BATTERY_IDLE = 2
    SOLAR_PRODUCING = 3
    SOLAR_IDLE = 4
    GRID_IMPORTING = 5
    GRID_EXPORTING = 6
    GRID_IDLE = 7


class TriggerUsage(enum.Enum):
    TRIGGER = "trigger"
    CONDITION = "condition"
    UNKNOWN = "unknown"


EDGES: Dict[Channel, Dict[PowerFlow, PowerFlowEdge]] = {
    Channel.BATTERY: {
        PowerFlow.NEGATIVE: PowerFlowEdge.BATTERY_CHARGING,
        PowerFlow.ZERO: PowerFlowEdge.BATTERY_IDLE,
        PowerFlow.POSITIVE: PowerFlowEdge.BATTERY_DISCHARGING,
    },
    Channel.SOLAR: {
        PowerFlow.ZERO: PowerFlowEdge.SOLAR_IDLE,
        PowerFlow.POSITIVE: PowerFlowEdge.SOLAR_PRODUCING,
    },
    Channel.GRID: {
        PowerFlow.NEGATIVE: PowerFlowEdge.GRID_EXPORTING,
        PowerFlow.ZERO: PowerFlowEdge.GRID_IDLE,
        PowerFlow.POSITIVE: PowerFlowEdge.GRID_IMPORTING,
    },
}

EDGE_CHANNEL: Dict[PowerFlowEdge, Channel] = {
    edge: channel for channel, edges in EDGES.items() for edge in edges.values()
}
EDGE_FLOW: Dict[PowerFlowEdge, PowerFlow] = {
    edge: flow for edges in EDGES.values() for flow, edge in edges.items()
}

# (subject, trigger phrase, condition phrase)
EDGE_PHRASES: Dict[PowerFlowEdge, tuple] = {
    PowerFlowEdge.BATTERY_CHARGING: ("Powerwall", "begins charging", "is charging"),
    PowerFlowEdge.BATTERY_DISCHARGING: ("Powerwall", "begins discharging", "is discharging"),
    PowerFlowEdge.BATTERY_IDLE: ("Powerwall", "becomes idle", "is idle"),
    PowerFlowEdge.SOLAR_PRODUCING: ("Solar", "begins producing", "is producing"),
    PowerFlowEdge.SOLAR_IDLE: ("Solar", "becomes idle", "is idle"),
    PowerFlowEdge.GRID_IMPORTING: ("Grid", "begins importing", "is importing"),
    PowerFlowEdge.GRID_EXPORTING: ("Grid", "begins exporting", "is exporting"),
    PowerFlowEdge.GRID_IDLE: ("Grid", "becomes idle", "is idle"),
}


def get_power_flow(watts: float, threshold: float = POWER_FLOW_THRESHOLD) -> PowerFlow:
    if abs(watts) >= threshold:
        return PowerFlow.POSITIVE if watts > 0 else PowerFlow.NEGATIVE
    return PowerFlow.ZERO


def describe(edge: PowerFlowEdge, usage: TriggerUsage = TriggerUsage.UNKNOWN) -> str:
    """
    Human readable name of an edge, e.g. "Tesla: Powerwall begins charging"

    When it is unknown whether the edge is used as a trigger or a condition
    both phrasings are combined ("begins/is charging").
    """
    subject, as_trigger, as_condition = EDGE_PHRASES[edge]
    if usage == TriggerUsage.TRIGGER:
        phrase = as_trigger
    elif usage == TriggerUsage.CONDITION:
        phrase = as_condition
    else:
        verb, _, rest = as_trigger.partition(' ')
        phrase = f"{verb}/{as_condition.split(' ')[0]} {rest}"
    return f"Tesla: {subject} {phrase}"


class Subscription:
    _ids = itertools.count(1)

    def __init__(self, edge: PowerFlowEdge, callback: Callable[["Subscription"], None]):
        self.id = next(self._ids)
        self.edge = edge
        self.callback = callback

    def __repr__(self):
        return f"Subscription(id={self.id}, edge={self.edge.name})"


UsageResolver = Callable[[Subscription], TriggerUsage]


class PowerFlowTriggerEngine:

    def __init__(self, threshold: float = POWER_FLOW_THRESHOLD, usage_resolver: Optional[UsageResolver] = None):
        self.threshold = threshold
        self.usage_resolver = usage_resolver
        self._subscriptions: List[Subscription] = []

    def subscribe(self, edge: PowerFlowEdge, callback: Callable[[Subscription], None]) -> Subscription:
        subscription = Subscription(PowerFlowEdge(edge), callback)
        self._subscriptions.append(subscription)
        log.debug(f"Registered {subscription}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)

    def classify(self, watts: float) -> PowerFlow:
        return get_power_flow(watts, self.threshold)

    def update(self, previous: Optional[Mapping[Channel, float]],
               current: Mapping[Channel, float]) -> List[PowerFlowEdge]:
        """
        Compare two consecutive readings and fire an event for every channel
        whose band changed. Returns the edges that fired.

        Args:
            previous = readings of the previous cycle (None right after connecting)
            current  = readings of this cycle
        """
        if previous is None:
            return []
        fired = []
        for channel in EDGES:
            if channel not in previous or channel not in current:
                continue
            before = self.classify(previous[channel])
            after = self.classify(current[channel])
            if before == after:
                continue
            edge = EDGES[channel].get(after)
            if edge is None:
                log.debug(f"No event for {channel.value} moving from {before.name} to {after.name}")
                continue
            log.debug(f"{channel.value} power flow changed from {before.name} to {after.name}")
            self.fire(edge)
            fired.append(edge)
        return fired

    def fire(self, edge: PowerFlowEdge) -> int:
        count = 0
        for subscription in list(self._subscriptions):
            if subscription.edge == edge:
                subscription.callback(subscription)
                count += 1
        log.debug(f"Fired {edge.name} for {count} subscription(s)")
        return count

    def is_condition_true(self, edge: PowerFlowEdge, readings: Optional[Mapping[Channel, float]]) -> bool:
        channel = EDGE_CHANNEL[edge]
        if not readings or readings.get(channel) is None:
            return False
        return self.classify(readings[channel]) == EDGE_FLOW[edge]

    def usage(self, subscription: Subscription) -> TriggerUsage:
        if self.usage_resolver is None:
            return TriggerUsage.UNKNOWN
        return self.usage_resolver(subscription)

    def describe(self, subscription: Subscription) -> str:
        return describe(subscription.edge, self.usage(subscription))
