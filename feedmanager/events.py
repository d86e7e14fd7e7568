"""Event types and in-process EventBus for job status notifications.

Jobs publish lifecycle events here so that observers (the CLI, an API
layer, tests) can follow progress without polling every job object.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Coroutine, Dict, List, Optional
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types emitted by the job and scheduling core."""

    # Job lifecycle
    JOB_STARTED = auto()
    JOB_COMPLETE = auto()
    JOB_FAILED = auto()

    # Chain stages
    STAGE_GUARDED = auto()

    # Feed lifecycle
    FEED_VERSION_CREATED = auto()
    FEED_PUBLISHED = auto()
    FEED_PROCESSED_EXTERNALLY = auto()
    DEPLOY_TRIGGERED = auto()


@dataclass
class Event:
    """Event published on the bus.

    Attributes:
        event_type: The type of event
        payload: Event-specific data
        event_id: Unique identifier for this event
        correlation_id: Id of the root job the event belongs to
        timestamp: When the event was created
        source: Component that emitted the event
    """

    event_type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)
    event_id: UUID = field(default_factory=uuid4)
    correlation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.utcnow)
    source: str = ""


EventHandler = Callable[[Event], Coroutine[Any, Any, None]]


class EventBus:
    """In-process async event bus.

    Example:
        bus = EventBus()

        async def handler(event: Event) -> None:
            print(f"Received: {event.event_type}")

        bus.subscribe(EventType.JOB_FAILED, handler)
        await bus.publish(Event(EventType.JOB_FAILED, {"job_id": "..."}))
    """

    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[EventHandler]] = {}
        self._global_handlers: List[EventHandler] = []
        self._event_history: List[Event] = []
        self._history_enabled: bool = False
        self._max_history: int = 1000

    def subscribe(
        self,
        event_type: EventType,
        handler: EventHandler,
    ) -> Callable[[], None]:
        """Subscribe a handler to a specific event type.

        Returns:
            Unsubscribe function to remove this subscription
        """
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            self._handlers[event_type].remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        """Subscribe a handler to all event types."""
        self._global_handlers.append(handler)

        def unsubscribe() -> None:
            self._global_handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribed handlers.

        Handlers run concurrently; a failing handler is logged and does not
        affect the others or the publisher.
        """
        if self._history_enabled:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history:]

        handlers: List[EventHandler] = list(self._global_handlers)
        handlers.extend(self._handlers.get(event.event_type, []))

        if not handlers:
            return

        await asyncio.gather(*[self._safe_call(handler, event) for handler in handlers])

    async def _safe_call(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception(f"Event handler error for {event.event_type.name}")

    def enable_history(self, max_size: int = 1000) -> None:
        """Enable event history tracking."""
        self._history_enabled = True
        self._max_history = max_size

    def get_history(
        self,
        event_type: Optional[EventType] = None,
        correlation_id: Optional[str] = None,
    ) -> List[Event]:
        """Get event history, optionally filtered."""
        events = self._event_history
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if correlation_id is not None:
            events = [e for e in events if e.correlation_id == correlation_id]
        return events

    def clear(self) -> None:
        """Clear all subscriptions and history."""
        self._handlers.clear()
        self._global_handlers.clear()
        self._event_history.clear()
