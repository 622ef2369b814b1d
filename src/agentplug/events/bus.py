"""Event bus shared by the host pipeline and plugins.

Example:
    bus = EventBus()

    async def add_context(payload):
        return {"prompt": payload["prompt"] + "\\n\\nContext: ..."}

    bus.subscribe("request_output:start", "memory", add_context)
    payload = await bus.publish("request_output:start", {"prompt": "hi"})

Event names are matched exactly. A phase suffix such as ``:start`` or
``:end`` is part of the name; when each phase is published is up to the
publisher.
"""

import itertools
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from agentplug.exceptions import EventDispatchError, HandlerFailure
from agentplug.telemetry.logger import LoggerMixin
from agentplug.utils.async_utils import call_maybe_async

# Handlers take the payload and may return a mapping merged into it.
EventHandler = Callable[[dict[str, Any]], Any]
DispatchFilter = Callable[[str], bool]


class EventPhase(str, Enum):
    """Phase suffixes used by pipeline events."""

    START = "start"
    END = "end"


def split_event_name(event_name: str) -> tuple[str, Optional[str]]:
    """Split an event name into its base and phase suffix.

    Only the exact suffixes ``start`` and ``end`` count as phases;
    ``memory:stored`` has no phase.

    Returns:
        (base name, phase or None)
    """
    base, sep, suffix = event_name.rpartition(":")
    if sep and base and suffix in (EventPhase.START.value, EventPhase.END.value):
        return base, suffix
    return event_name, None


def phase_event(base_name: str, phase: Optional[EventPhase] = None) -> str:
    """Build an event name from a base name and optional phase."""
    if phase is None:
        return base_name
    return f"{base_name}:{EventPhase(phase).value}"


@dataclass(eq=False)
class EventSubscription:
    """A handler subscribed to one event.

    Attributes:
        event_name: Exact event name the handler receives
        plugin_name: Owning plugin, or None for host subscriptions
        handler: Sync or async callable taking the payload
        order: Registration sequence number, dispatch follows it
        active: False once unsubscribed
    """

    event_name: str
    plugin_name: Optional[str]
    handler: EventHandler
    order: int
    active: bool = True


class EventBus(LoggerMixin):
    """Ordered publish/subscribe channel with payload merging."""

    def __init__(self, dispatch_filter: Optional[DispatchFilter] = None) -> None:
        self._subscriptions: list[EventSubscription] = []
        self._sequence = itertools.count()
        self._dispatch_filter = dispatch_filter

    def set_dispatch_filter(self, dispatch_filter: Optional[DispatchFilter]) -> None:
        """Decide per plugin whether its handlers receive events.

        Host subscriptions (no plugin name) are never filtered.
        """
        self._dispatch_filter = dispatch_filter

    def subscribe(
        self,
        event_name: str,
        plugin_name: Optional[str],
        handler: EventHandler,
    ) -> EventSubscription:
        """Subscribe a handler to an event.

        Args:
            event_name: Exact event name (no wildcards)
            plugin_name: Owning plugin, or None for the host
            handler: Callable taking the payload dict

        Returns:
            Subscription handle for unsubscribe()
        """
        if not event_name or "*" in event_name:
            raise ValueError(f"Invalid event name: {event_name!r}")
        if not callable(handler):
            raise TypeError(f"Handler for event '{event_name}' is not callable")

        subscription = EventSubscription(
            event_name=event_name,
            plugin_name=plugin_name,
            handler=handler,
            order=next(self._sequence),
        )
        self._subscriptions.append(subscription)

        base, phase = split_event_name(event_name)
        self.logger.debug(
            "Handler subscribed",
            event_name=base,
            phase=phase,
            plugin=plugin_name,
        )
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> bool:
        """Remove one subscription.

        Returns:
            True if it was still subscribed
        """
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return False
        subscription.active = False
        return True

    def unsubscribe_all(self, plugin_name: str) -> int:
        """Remove every subscription owned by a plugin. Safe to call repeatedly.

        Returns:
            Number of subscriptions removed
        """
        kept: list[EventSubscription] = []
        removed = 0
        for subscription in self._subscriptions:
            if subscription.plugin_name == plugin_name:
                subscription.active = False
                removed += 1
            else:
                kept.append(subscription)
        self._subscriptions = kept
        if removed:
            self.logger.debug("Unsubscribed plugin handlers", plugin=plugin_name, count=removed)
        return removed

    def subscriptions(self, event_name: Optional[str] = None) -> list[EventSubscription]:
        """Current subscriptions in dispatch order."""
        if event_name is None:
            return list(self._subscriptions)
        return [s for s in self._subscriptions if s.event_name == event_name]

    async def publish(
        self,
        event_name: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        """Run every handler for an event, one at a time, in order.

        Each handler receives a copy of the payload as merged so far. A
        mapping returned by a handler is merged over the payload before the
        next handler runs. A failing handler does not stop the others.

        Args:
            event_name: Event to publish
            payload: Initial payload (not modified)

        Returns:
            The merged payload

        Raises:
            EventDispatchError: After dispatch, if any handler failed
        """
        current: dict[str, Any] = dict(payload or {})
        failures: list[HandlerFailure] = []

        for subscription in self.subscriptions(event_name):
            if not subscription.active:
                continue
            if (
                self._dispatch_filter is not None
                and subscription.plugin_name is not None
                and not self._dispatch_filter(subscription.plugin_name)
            ):
                continue

            try:
                result = await call_maybe_async(subscription.handler, dict(current))
            except Exception as e:
                failures.append(HandlerFailure(event_name, subscription.plugin_name, e))
                self.logger.error(
                    "Event handler error",
                    event_name=event_name,
                    plugin=subscription.plugin_name,
                    error=str(e),
                )
                continue

            if isinstance(result, Mapping):
                current = {**current, **result}

        if failures:
            raise EventDispatchError(event_name, failures, current)
        return current
