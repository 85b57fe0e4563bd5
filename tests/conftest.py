import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from mcp.types import ElicitResult

from mcp_elicitation.capabilities import CapabilityRegistry
from mcp_elicitation.config import Settings, _clear_global_settings
from mcp_elicitation.coordinator import ElicitationCoordinator
from mcp_elicitation.logging.logger import LoggingConfig
from mcp_elicitation.logging.transport import AsyncEventBus
from mcp_elicitation.peer.client import ElicitationPeer
from mcp_elicitation.session import Session
from mcp_elicitation.transport import MemoryTransport

NAME_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "The name of the user"},
    },
    "required": ["name"],
}

CONTACT_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "email": {"type": "string", "format": "email"},
    },
    "required": ["name", "email"],
}


@pytest.fixture(autouse=True)
def reset_global_state():
    """Every test starts with a fresh event bus and no memoized settings."""
    AsyncEventBus.reset()
    LoggingConfig._initialized = False
    _clear_global_settings()
    yield
    AsyncEventBus.reset()
    LoggingConfig._initialized = False
    _clear_global_settings()


@pytest.fixture
def settings():
    return Settings(elicitation={"timeout_seconds": 5}, logger={"type": "none"})


@pytest.fixture
def coordinator():
    return ElicitationCoordinator(timeout_seconds=5)


@pytest.fixture
def transports():
    """Connected (server_side, client_side) in-memory transports."""
    return MemoryTransport.create_pair()


@pytest.fixture
def session(transports):
    server_side, _ = transports
    return Session("session-1", CapabilityRegistry(), transport=server_side)


@pytest.fixture
def client_side(transports):
    return transports[1]


async def next_frame(transport: MemoryTransport, timeout: float = 2.0) -> dict:
    """Read and decode the next frame arriving at ``transport``."""
    return json.loads(await asyncio.wait_for(transport.receive(), timeout))


INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 0,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-06-18",
        "capabilities": {"elicitation": {}},
        "clientInfo": {"name": "test-client", "version": "0.0.1"},
    },
}


def answering(content=None, action="accept"):
    """An AsyncMock elicitation callback that always gives the same reply."""

    async def callback(request):
        return ElicitResult(action=action, content=content)

    return AsyncMock(side_effect=callback)


async def connect(server, callback):
    """Serve one session over a fresh transport pair and initialize a peer on it."""
    server_side, client_side = MemoryTransport.create_pair()
    serving = asyncio.create_task(server.serve(server_side))
    peer = ElicitationPeer(client_side, callback)
    peer.start()
    await peer.initialize()
    return peer, serving


async def disconnect(peer, serving):
    await peer.close()
    await asyncio.wait_for(serving, 2.0)
