"""
In-process Event Bus

Committed events and transient alerts are published here after every
successful operation. The notification dispatcher (push, email, in-app)
subscribes from outside the core; a failing subscriber never fails the
governance action that produced the event.

Fun fact: This is the "observer" pattern - in production the same
interface could forward to a message queue without touching domain code.
"""

from collections import defaultdict
from typing import Callable

from group_governance.kernel.events import Event
from group_governance.kernel.logging import get_logger

logger = get_logger(__name__)


EventHandler = Callable[[Event], None]

# Subscribing to this key receives every event
ALL_EVENTS = "*"


class InProcessBus:
    """
    Simple synchronous in-process pub/sub

    Handlers are called in registration order on the publishing thread.
    """

    def __init__(self) -> None:
        self._event_handlers: defaultdict[str, list[EventHandler]] = defaultdict(list)

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register an event handler (can have multiple per event type)

        Args:
            event_type: Type of event to handle (e.g., "BallotResolved"), or
                ``ALL_EVENTS`` for every event
            handler: Callable receiving the event
        """
        self._event_handlers[event_type].append(handler)
        logger.debug(
            "Event handler registered",
            event_type=event_type,
            total_handlers=len(self._event_handlers[event_type]),
        )

    def publish_event(self, event: Event) -> None:
        """
        Publish an event to all registered handlers

        If a handler fails, it doesn't affect other handlers (we catch and log).
        """
        handlers = self._event_handlers.get(event.event_type, []) + self._event_handlers.get(
            ALL_EVENTS, []
        )
        if not handlers:
            return

        logger.debug(
            "Publishing event",
            event_type=event.event_type,
            event_id=event.event_id,
            stream_id=event.stream_id,
            handler_count=len(handlers),
        )

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    event_type=event.event_type,
                    event_id=event.event_id,
                    stream_id=event.stream_id,
                    error=str(e),
                    exc_info=True,
                )

    def publish_events(self, events: list[Event]) -> None:
        for event in events:
            self.publish_event(event)

    def get_event_types(self) -> list[str]:
        """Event types with at least one subscriber"""
        return list(self._event_handlers.keys())

    def clear(self) -> None:
        """Remove all handlers (useful for testing)"""
        self._event_handlers.clear()
