"""Event bus for pipeline and plugin events."""

from agentplug.events.bus import (
    EventBus,
    EventHandler,
    EventPhase,
    EventSubscription,
    phase_event,
    split_event_name,
)

__all__ = [
    "EventBus",
    "EventHandler",
    "EventPhase",
    "EventSubscription",
    "phase_event",
    "split_event_name",
]
