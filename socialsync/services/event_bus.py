"""
Cross-screen event bus.

Events are small dataclasses; handlers subscribe to an event type and get
back a handle that releases exactly that subscription. Handlers may be
plain functions or coroutine functions. Process-local, no persistence.
"""
import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class RefreshChatList:
    """Ask chat lists to reload; ``user_id`` narrows it to one user's list."""
    user_id: Optional[str] = None
    reason: str = ""


@dataclass(frozen=True)
class NotificationsChanged:
    user_id: str


class EventSubscription:
    """Handle returned by ``EventBus.subscribe``."""

    def __init__(self, bus: "EventBus", event_type: type, handler: Callable[[Any], Any]):
        self._bus = bus
        self.event_type = event_type
        self.handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self):
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)

    def __enter__(self) -> "EventSubscription":
        return self

    def __exit__(self, *exc_info):
        self.unsubscribe()


class EventBus:
    """Typed publish/subscribe for the lifetime of the app."""

    def __init__(self):
        self._handlers: Dict[type, List[EventSubscription]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], Any]) -> EventSubscription:
        subscription = EventSubscription(self, event_type, handler)
        self._handlers[event_type].append(subscription)
        return subscription

    def _remove(self, subscription: EventSubscription):
        handlers = self._handlers.get(subscription.event_type, [])
        if subscription in handlers:
            handlers.remove(subscription)

    def handler_count(self, event_type: type) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: Any) -> int:
        """
        Deliver ``event`` to every handler of its type, in subscription order.

        A failing handler is logged and skipped.

        Returns:
            Number of handlers invoked
        """
        delivered = 0
        for subscription in list(self._handlers.get(type(event), [])):
            if not subscription.active:
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Handler for {type(event).__name__} failed: {e}", exc_info=True)
        return delivered

    def clear(self):
        for handlers in self._handlers.values():
            for subscription in handlers:
                subscription._active = False
        self._handlers.clear()


# Global singleton
event_bus = EventBus()
