"""
Event Bus - in-process publish/subscribe for domain events.

The file processor publishes what happened to each file; the CLI, tests or a
GUI layer subscribe to the event types they care about.
"""

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

logger = logging.getLogger(__name__)


class EventPriority(Enum):
    """Priority levels for events."""
    NORMAL = 1
    CRITICAL = 3


T = TypeVar('T', bound='DomainEvent')


@dataclass
class DomainEvent:
    """Base class for all domain events."""
    event_id: str = field(default_factory=lambda: f"evt_{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        return {
            "event_type": self.__class__.__name__,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
            "data": self._get_event_data(),
        }

    def _get_event_data(self) -> Dict[str, Any]:
        """Get event-specific data for serialization."""
        return {}


class EventBus:
    """
    Central event bus for publishing and subscribing to domain events.

    Handlers are held by weak reference, so a subscriber that goes away is
    dropped automatically. Handlers may be plain functions or coroutines.
    """

    def __init__(self, max_events_in_memory: int = 1000):
        self._handlers: Dict[Type[DomainEvent], List[weakref.ref]] = {}
        self._event_store: List[DomainEvent] = []
        self._max_events_in_memory = max_events_in_memory

    def subscribe(self, event_type: Type[T], handler: Callable[[T], Any]) -> None:
        """
        Subscribe to events of a specific type (and its subclasses).

        Args:
            event_type: The event class to subscribe to
            handler: The handler function/method
        """
        if hasattr(handler, '__self__'):
            ref = weakref.WeakMethod(handler)
        else:
            ref = weakref.ref(handler)
        self._handlers.setdefault(event_type, []).append(ref)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: Callable) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [
                ref for ref in self._handlers[event_type]
                if ref() is not None and ref() != handler
            ]

    async def publish(self, event: DomainEvent,
                      priority: EventPriority = EventPriority.NORMAL) -> None:
        """
        Publish an event to all subscribers.

        Critical events are handled one handler at a time in subscription
        order; others are handled concurrently. Handler errors are logged
        and never reach the publisher.
        """
        self._event_store.append(event)
        if len(self._event_store) > self._max_events_in_memory:
            self._event_store.pop(0)

        handlers = []
        for event_type in type(event).__mro__:
            if event_type in self._handlers:
                handlers.extend(h for h in (ref() for ref in self._handlers[event_type]) if h is not None)

        if not handlers:
            return

        if priority == EventPriority.CRITICAL:
            for handler in handlers:
                await self._safe_handle(handler, event)
        else:
            await asyncio.gather(*(self._safe_handle(h, event) for h in handlers))

    def get_events(self,
                   since: Optional[datetime] = None,
                   event_type: Optional[Type[DomainEvent]] = None) -> List[DomainEvent]:
        """Get events from the store with optional filtering."""
        events = self._event_store
        if since:
            events = [e for e in events if e.timestamp >= since]
        if event_type:
            events = [e for e in events if isinstance(e, event_type)]
        return list(events)

    async def _safe_handle(self, handler: Callable, event: DomainEvent) -> None:
        try:
            result = handler(event)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error in event handler {handler} for {type(event).__name__}: {e}")

    def clear(self) -> None:
        """Clear all handlers and events."""
        self._handlers.clear()
        self._event_store.clear()
