"""
Logger module for the elicitation server, which provides:
- An async event bus that fans events out to listeners
- A developer-friendly Logger that can be used anywhere, with or without a running loop
- LoggingConfig to wire listeners (and a rich console handler) at startup
"""

import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Dict

from rich.logging import RichHandler

from mcp_elicitation.console import error_console
from mcp_elicitation.logging.events import (
    Event,
    EventContext,
    EventFilter,
    EventType,
)
from mcp_elicitation.logging.listeners import LoggingListener
from mcp_elicitation.logging.transport import AsyncEventBus


class Logger:
    """
    Developer-friendly logger that sends events to the AsyncEventBus.
    - `type` is a broad category (INFO, ERROR, etc.).
    - `name` can be a custom domain-specific event name, e.g. "elicitation.resolved".
    """

    def __init__(self, namespace: str, session_id: str | None = None):
        self.namespace = namespace
        self.session_id = session_id

    @property
    def event_bus(self) -> AsyncEventBus:
        return AsyncEventBus.get()

    def _emit_event(self, event: Event):
        bus = self.event_bus
        if not bus.listeners:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop in this thread: deliver synchronously
            asyncio.run(bus.emit(event))
            return
        bus.schedule(event)

    def event(
        self,
        etype: EventType,
        ename: str | None,
        message: str,
        context: EventContext | None,
        data: dict,
    ):
        """Create and emit an event."""
        if self.session_id:
            if context is None:
                context = EventContext(session_id=self.session_id)
            elif context.session_id is None:
                context.session_id = self.session_id
        elif context is None and "session_id" in data:
            context = EventContext(
                session_id=data.get("session_id"), request_id=data.get("request_id")
            )

        evt = Event(
            type=etype,
            name=ename,
            namespace=self.namespace,
            message=message,
            context=context,
            data=data,
        )
        self._emit_event(evt)

    def debug(
        self, message: str, name: str | None = None, context: EventContext = None, **data
    ):
        """Log a debug message."""
        self.event("debug", name, message, context, data)

    def info(
        self, message: str, name: str | None = None, context: EventContext = None, **data
    ):
        """Log an info message."""
        self.event("info", name, message, context, data)

    def warning(
        self, message: str, name: str | None = None, context: EventContext = None, **data
    ):
        """Log a warning message."""
        self.event("warning", name, message, context, data)

    def error(
        self, message: str, name: str | None = None, context: EventContext = None, **data
    ):
        """Log an error message."""
        self.event("error", name, message, context, data)


@contextmanager
def event_context(
    logger: Logger,
    message: str,
    event_type: EventType = "info",
    name: str | None = None,
    **data,
):
    """
    Times a synchronous block, logs an event after completion.
    """
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        logger.event(
            event_type,
            name,
            f"{message} finished in {duration:.3f}s",
            None,
            {"duration": duration, **data},
        )


class LoggingConfig:
    """Global configuration for the logging system."""

    _initialized: bool = False
    _event_filter_ref: EventFilter | None = None

    @classmethod
    async def configure(
        cls,
        event_filter: EventFilter | None = None,
        logger_type: str = "console",
        show_path: bool = False,
        **kwargs: Any,
    ):
        """
        Configure the logging system.

        Args:
            event_filter: Default filter for all listeners
            logger_type: "console" routes events to a rich stderr handler, "none" drops them
            show_path: Whether the rich handler prints the emitting source location
        """
        bus = AsyncEventBus.get()
        if event_filter is not None:
            cls._event_filter_ref = event_filter

        if cls._initialized:
            return

        if logger_type != "none":
            py_logger = logging.getLogger("mcp_elicitation")
            if not any(isinstance(h, RichHandler) for h in py_logger.handlers):
                py_logger.addHandler(
                    RichHandler(
                        console=error_console,
                        show_path=show_path,
                        rich_tracebacks=True,
                    )
                )
            py_logger.setLevel(logging.DEBUG)
            py_logger.propagate = kwargs.get("propagate", True)

            if "logging" not in bus.listeners:
                bus.add_listener("logging", LoggingListener(event_filter=event_filter))

        await bus.start()
        cls._initialized = True

    @classmethod
    async def shutdown(cls):
        """Shutdown the logging system gracefully."""
        if not cls._initialized:
            return
        bus = AsyncEventBus.get()
        await bus.stop()
        bus.remove_listener("logging")
        cls._initialized = False

    @classmethod
    def set_min_level(cls, level: EventType | str) -> None:
        """Update the minimum logging level on the shared event filter, if available."""
        if cls._event_filter_ref is None:
            return
        normalized = str(level).lower()
        mapping: Dict[str, EventType] = {
            "debug": "debug",
            "info": "info",
            "notice": "info",
            "warning": "warning",
            "warn": "warning",
            "error": "error",
            "critical": "error",
        }
        cls._event_filter_ref.min_level = mapping.get(normalized, "info")

    @classmethod
    def get_event_filter(cls) -> EventFilter | None:
        return cls._event_filter_ref

    @classmethod
    @asynccontextmanager
    async def managed(cls, **config_kwargs):
        """Context manager for the logging system lifecycle."""
        try:
            await cls.configure(**config_kwargs)
            yield
        finally:
            await cls.shutdown()


_logger_lock = threading.Lock()
_loggers: Dict[str, Logger] = {}


def get_logger(namespace: str, session_id: str | None = None) -> Logger:
    """
    Get a logger instance for a given namespace.
    Creates a new logger if one doesn't exist for this namespace.

    Args:
        namespace: The namespace for the logger (e.g. "mcp_elicitation.coordinator")
        session_id: Optional session ID to associate with all events from this logger

    Returns:
        A Logger instance for the given namespace
    """
    with _logger_lock:
        existing = _loggers.get(namespace)
        if existing is None:
            logger = Logger(namespace, session_id)
            _loggers[namespace] = logger
            return logger

        if session_id is not None:
            existing.session_id = session_id
        return existing
