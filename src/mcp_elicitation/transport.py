"""
Transport adapter: moves serialized JSON-RPC frames between one client and one server.

Framing and the physical channel are out of scope here; the only contract the
server relies on is `send` / `receive` / `close` with TransportClosed signalling
that the channel is gone.
"""

import asyncio
import json
from typing import Any, Dict, Protocol, Tuple, runtime_checkable

from mcp_elicitation.errors import TransportClosed

_EOF = object()


@runtime_checkable
class Transport(Protocol):
    """A bidirectional, message-oriented channel to a single peer."""

    @property
    def closed(self) -> bool: ...

    async def send(self, message: Dict[str, Any]) -> None:
        """Serialize and deliver one frame to the peer."""
        ...

    async def receive(self) -> str:
        """Wait for the next raw frame from the peer. Raises TransportClosed at EOF."""
        ...

    async def close(self) -> None: ...


class MemoryTransport:
    """
    One end of an in-process channel. Frames are JSON-encoded on send, so the two
    ends never share Python objects.
    """

    def __init__(
        self,
        inbound: "asyncio.Queue[Any]",
        outbound: "asyncio.Queue[Any]",
        name: str = "memory",
    ):
        self.name = name
        self._inbound = inbound
        self._outbound = outbound
        self._closed = False

    @classmethod
    def create_pair(cls) -> Tuple["MemoryTransport", "MemoryTransport"]:
        """Return connected (server_side, client_side) transports."""
        to_server: asyncio.Queue[Any] = asyncio.Queue()
        to_client: asyncio.Queue[Any] = asyncio.Queue()
        server_side = cls(inbound=to_server, outbound=to_client, name="server")
        client_side = cls(inbound=to_client, outbound=to_server, name="client")
        return server_side, client_side

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: Dict[str, Any]) -> None:
        if self._closed:
            raise TransportClosed(f"Transport '{self.name}' is closed")
        await self._outbound.put(json.dumps(message))

    async def send_raw(self, frame: str) -> None:
        """Deliver an already-serialized frame as-is."""
        if self._closed:
            raise TransportClosed(f"Transport '{self.name}' is closed")
        await self._outbound.put(frame)

    async def receive(self) -> str:
        if self._closed and self._inbound.empty():
            raise TransportClosed(f"Transport '{self.name}' is closed")
        frame = await self._inbound.get()
        if frame is _EOF:
            self._closed = True
            raise TransportClosed(f"Transport '{self.name}' was closed by the peer")
        return frame

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake the peer's reader and our own
        await self._outbound.put(_EOF)
        await self._inbound.put(_EOF)
