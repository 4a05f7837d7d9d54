"""
FanZone - Events Package

In-process event bus and the controller subscription protocol built on it.

Usage:
    from events import EventBus, ControllerBase, EventNames

    bus = EventBus()
    await bus.initialize()
"""
from events.bus import EventBus, EventNames, EventRecord, NamespacedEventBus
from events.controller import (
    ControllerBase,
    PendingSubscription,
    Subscription,
    SubscriptionOptions,
)

__all__ = [
    "ControllerBase",
    "EventBus",
    "EventNames",
    "EventRecord",
    "NamespacedEventBus",
    "PendingSubscription",
    "Subscription",
    "SubscriptionOptions",
]
