"""
In-process event bus that fans events out to listeners.
"""

import asyncio
import sys
from typing import Dict, Set

from mcp_elicitation.logging.events import Event
from mcp_elicitation.logging.listeners import EventListener, LifecycleAwareListener


class AsyncEventBus:
    """
    Process-wide bus. Loggers emit onto it; every registered listener sees every event.
    """

    _instance: "AsyncEventBus | None" = None

    def __init__(self):
        self.listeners: Dict[str, EventListener] = {}
        self._running = False
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def get(cls) -> "AsyncEventBus":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton. Intended for tests."""
        cls._instance = None

    def add_listener(self, name: str, listener: EventListener) -> None:
        self.listeners[name] = listener

    def remove_listener(self, name: str) -> None:
        self.listeners.pop(name, None)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            return
        for listener in self.listeners.values():
            if isinstance(listener, LifecycleAwareListener):
                await listener.start()
        self._running = True

    async def stop(self):
        if not self._running:
            return
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        for listener in self.listeners.values():
            if isinstance(listener, LifecycleAwareListener):
                await listener.stop()
        self._running = False

    async def emit(self, event: Event):
        for name, listener in list(self.listeners.items()):
            try:
                await listener.handle_event(event)
            except Exception as e:
                print(f"Error in event listener '{name}': {e}", file=sys.stderr)

    def schedule(self, event: Event) -> None:
        """Emit from inside a running loop without awaiting the listeners."""
        task = asyncio.get_running_loop().create_task(self.emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
