"""
Listeners for the logger module.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List

from mcp_elicitation.logging.events import Event, EventFilter, EventType


class EventListener(ABC):
    """Base async listener that processes events."""

    @abstractmethod
    async def handle_event(self, event: Event):
        """Process an incoming event."""


class LifecycleAwareListener(EventListener):
    """
    Optionally override start()/stop() for setup/teardown.
    The event bus calls these at bus start/stop time.
    """

    async def start(self):
        pass

    async def stop(self):
        pass


class FilteredListener(LifecycleAwareListener):
    """
    Only processes events that pass the given filter.
    Subclasses override handle_matched_event().
    """

    def __init__(self, event_filter: EventFilter | None = None):
        self.filter = event_filter

    async def handle_event(self, event):
        if not self.filter or self.filter.matches(event):
            await self.handle_matched_event(event)

    async def handle_matched_event(self, event: Event):
        """Process an event that matches the filter."""
        pass


class LoggingListener(FilteredListener):
    """
    Routes events to Python's logging facility with appropriate severity level.
    """

    def __init__(
        self,
        event_filter: EventFilter | None = None,
        logger: logging.Logger | None = None,
    ):
        super().__init__(event_filter=event_filter)
        self.logger = logger or logging.getLogger("mcp_elicitation")

    async def handle_matched_event(self, event):
        level_map: Dict[EventType, int] = {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warning": logging.WARNING,
            "error": logging.ERROR,
        }
        level = level_map.get(event.type, logging.INFO)

        self.logger.log(
            level,
            "[%s] %s",
            event.namespace,
            event.message,
            extra={
                "event_data": event.data,
                "event_name": event.name,
                "session_id": event.context.session_id if event.context else None,
            },
        )


class CollectingListener(FilteredListener):
    """Keeps matched events in memory. Handy for tests and for post-run summaries."""

    def __init__(self, event_filter: EventFilter | None = None):
        super().__init__(event_filter=event_filter)
        self.events: List[Event] = []

    async def handle_matched_event(self, event):
        self.events.append(event)
