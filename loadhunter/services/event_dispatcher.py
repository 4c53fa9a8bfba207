"""
Event dispatcher for keyed real-time updates.

Services emit events on a topic key after their write has committed; the
WebSocket layer and bid views subscribe to the keys they care about:

    dispatcher = get_dispatcher()
    await dispatcher.emit(Event(EventType.MATCH_UPDATED, match_topic(match.id), {...}))

Subscriptions are cheap and are closed as soon as a view goes away. Closing a
subscription never cancels a write that is already in flight.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

from loadhunter.utils.clock import utcnow

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types for real-time updates."""
    MATCH_UPDATED = "match.updated"
    MATCH_VIEWED = "match.viewed"
    LOAD_BID_CREATED = "load_bid.created"


def load_topic(load_id: str) -> str:
    return f"load:{load_id}"


def match_topic(match_id: str) -> str:
    return f"match:{match_id}"


def load_bids_topic(load_id: str) -> str:
    return f"load_bids:{load_id}"


@dataclass
class Event:
    """Represents an event to be dispatched."""
    type: EventType
    key: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)


# Type for event handlers
EventHandler = Callable[[Event], Any]


class Subscription:
    """Handle returned by ``subscribe``; ``close()`` is idempotent."""

    def __init__(self, dispatcher: "EventDispatcher", key: str, handler: EventHandler) -> None:
        self._dispatcher = dispatcher
        self.key = key
        self.handler = handler
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._dispatcher.unsubscribe(self)


class EventDispatcher:
    """
    In-process pub/sub keyed by topic.

    Handlers may be plain callables or coroutine functions. A failing handler
    is logged and never affects the emitter or the other handlers.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Subscription]] = {}

    def subscribe(self, key: str, handler: EventHandler) -> Subscription:
        """Subscribe to every event emitted on ``key``."""
        subscription = Subscription(self, key, handler)
        self._handlers.setdefault(key, []).append(subscription)
        logger.debug(f"Handler subscribed to {key}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        remaining = [s for s in self._handlers.get(subscription.key, []) if s is not subscription]
        if remaining:
            self._handlers[subscription.key] = remaining
        else:
            self._handlers.pop(subscription.key, None)

    def subscriber_count(self, key: str) -> int:
        return len(self._handlers.get(key, []))

    async def emit(self, event: Event) -> None:
        """Emit an event to all subscribers of its key."""
        subscriptions = list(self._handlers.get(event.key, []))

        if not subscriptions:
            logger.debug(f"No handlers for {event.type.value} on {event.key}")
            return

        tasks = []
        for subscription in subscriptions:
            if subscription.closed:
                continue
            try:
                result = subscription.handler(event)
                if asyncio.iscoroutine(result):
                    tasks.append(result)
            except Exception as e:
                logger.error(f"Error in event handler for {event.type.value}: {e}")

        if tasks:
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Error in event handler for {event.type.value}: {result}")

        logger.debug(f"Event {event.type.value} dispatched to {len(subscriptions)} handlers")


# Global dispatcher instance
_dispatcher = EventDispatcher()


def get_dispatcher() -> EventDispatcher:
    """Get the global event dispatcher."""
    return _dispatcher

