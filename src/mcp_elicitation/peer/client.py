"""
Client side of a session: issues requests to an ElicitationServer and answers the
elicitation/create requests it sends back.
"""

import asyncio
import itertools
import json
from typing import Any, Dict, List, Set, Tuple

from mcp.types import (
    INTERNAL_ERROR,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    CallToolResult,
    ElicitResult,
    ErrorData,
    GetPromptResult,
    JSONRPCResponse,
    ListPromptsResult,
    ListResourcesResult,
    ListToolsResult,
    ReadResourceResult,
)

from mcp_elicitation.coordinator import ELICITATION_METHOD
from mcp_elicitation.errors import RemoteError, TransportClosed
from mcp_elicitation.logging.logger import get_logger
from mcp_elicitation.peer.types import ElicitationCallback, ElicitRequest
from mcp_elicitation.transport import Transport

logger = get_logger(__name__)


async def decline_elicitation_callback(request: ElicitRequest) -> ElicitResult:
    """Default callback: decline everything."""
    return ElicitResult(action="decline")


class ElicitationPeer:
    """
    Drives one client connection. A background reader task routes responses to the
    requests waiting on them and hands elicitation requests to ``elicitation_callback``.

    Usage:
        async with ElicitationPeer(transport, my_callback) as peer:
            await peer.initialize()
            result = await peer.call_tool("greeting")
    """

    def __init__(
        self,
        transport: Transport,
        elicitation_callback: ElicitationCallback | None = None,
        client_name: str = "mcp-elicitation-peer",
        client_version: str = "1.0.0",
    ):
        self.transport = transport
        self.elicitation_callback = elicitation_callback or decline_elicitation_callback
        self.client_name = client_name
        self.client_version = client_version
        self.server_info: Dict[str, Any] | None = None

        # Every elicitation request received, in order
        self.elicitations: List[ElicitRequest] = []

        self._ids = itertools.count(1)
        self._responses: Dict[int, asyncio.Future] = {}
        self._answering: Set[asyncio.Task] = set()
        self._reader: asyncio.Task | None = None

    async def __aenter__(self) -> "ElicitationPeer":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def server_name(self) -> str | None:
        return (self.server_info or {}).get("name")

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        await self.transport.close()
        if self._reader is not None:
            await self._reader
            self._reader = None
        # Answers still being collected can no longer be delivered
        for task in list(self._answering):
            task.cancel()
        if self._answering:
            await asyncio.gather(*self._answering, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Inbound frames
    # ------------------------------------------------------------------ #

    async def _read_loop(self) -> None:
        try:
            while True:
                frame = await self.transport.receive()
                try:
                    message = json.loads(frame)
                except json.JSONDecodeError:
                    logger.warning("Ignoring frame that is not valid JSON", frame=frame)
                    continue
                self._route(message)
        except TransportClosed:
            logger.debug("Peer transport closed")
        finally:
            for future in self._responses.values():
                if not future.done():
                    future.set_exception(
                        TransportClosed("Transport closed before a response arrived")
                    )
            self._responses.clear()

    def _route(self, message: Dict[str, Any]) -> None:
        if "method" in message and "id" in message:
            task = asyncio.create_task(self._answer(message))
            self._answering.add(task)
            task.add_done_callback(self._answering.discard)
        elif "id" in message:
            future = self._responses.pop(message["id"], None)
            if future is not None and not future.done():
                future.set_result(message)
        else:
            logger.debug(f"Ignoring notification {message.get('method')}")

    async def _answer(self, message: Dict[str, Any]) -> None:
        request_id = message["id"]
        if message.get("method") != ELICITATION_METHOD:
            await self._send_error(
                request_id,
                ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {message.get('method')}"),
            )
            return

        params = message.get("params") or {}
        request = ElicitRequest(
            request_id=request_id,
            message=params.get("message", ""),
            requestedSchema=params.get("requestedSchema") or {},
            server_name=self.server_name,
        )
        self.elicitations.append(request)

        try:
            result = await self.elicitation_callback(request)
        except Exception as e:
            logger.error(f"Elicitation callback failed: {e}", request_id=request_id)
            result = ErrorData(code=INTERNAL_ERROR, message=str(e))

        if isinstance(result, ErrorData):
            await self._send_error(request_id, result)
            return

        frame = JSONRPCResponse(
            jsonrpc="2.0",
            id=request_id,
            result=result.model_dump(by_alias=True, mode="json", exclude_none=True),
        )
        await self._send(frame.model_dump(by_alias=True, mode="json", exclude_none=True))

    async def _send_error(self, request_id: Any, error: ErrorData) -> None:
        await self._send(
            {"jsonrpc": "2.0", "id": request_id, "error": error.model_dump(exclude_none=True)}
        )

    async def _send(self, frame: Dict[str, Any]) -> None:
        try:
            await self.transport.send(frame)
        except TransportClosed:
            logger.warning("Dropping outbound frame, transport is closed", id=frame.get("id"))

    # ------------------------------------------------------------------ #
    # Outbound requests
    # ------------------------------------------------------------------ #

    async def send_request(
        self, method: str, params: Dict[str, Any] | None = None
    ) -> Tuple[int, asyncio.Future]:
        """Send a request without waiting. Returns its id and the future of its response frame."""
        self.start()
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._responses[request_id] = future

        frame: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            frame["params"] = params
        try:
            await self.transport.send(frame)
        except TransportClosed:
            self._responses.pop(request_id, None)
            raise
        return request_id, future

    async def request(self, method: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
        """Send a request and return its result. Raises RemoteError on an error response."""
        _, future = await self.send_request(method, params)
        message = await future
        if "error" in message:
            error = message["error"] or {}
            raise RemoteError(
                error.get("code", INTERNAL_ERROR), error.get("message", ""), error.get("data")
            )
        return message.get("result") or {}

    async def notify(self, method: str, params: Dict[str, Any] | None = None) -> None:
        frame: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            frame["params"] = params
        await self.transport.send(frame)

    async def cancel_request(self, request_id: int, reason: str | None = None) -> None:
        """Tell the server to abandon one of our requests. Its future is cancelled."""
        future = self._responses.pop(request_id, None)
        if future is not None:
            future.cancel()
        params: Dict[str, Any] = {"requestId": request_id}
        if reason:
            params["reason"] = reason
        await self.notify("notifications/cancelled", params)

    async def initialize(self) -> Dict[str, Any]:
        result = await self.request(
            "initialize",
            {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {"elicitation": {}},
                "clientInfo": {"name": self.client_name, "version": self.client_version},
            },
        )
        self.server_info = result.get("serverInfo")
        await self.notify("notifications/initialized")
        return result

    async def ping(self) -> Dict[str, Any]:
        return await self.request("ping")

    async def list_tools(self) -> ListToolsResult:
        return ListToolsResult.model_validate(await self.request("tools/list"))

    async def list_resources(self) -> ListResourcesResult:
        return ListResourcesResult.model_validate(await self.request("resources/list"))

    async def list_prompts(self) -> ListPromptsResult:
        return ListPromptsResult.model_validate(await self.request("prompts/list"))

    async def call_tool(
        self, name: str, arguments: Dict[str, Any] | None = None
    ) -> CallToolResult:
        result = await self.request("tools/call", {"name": name, "arguments": arguments or {}})
        return CallToolResult.model_validate(result)

    async def read_resource(self, uri: str) -> ReadResourceResult:
        return ReadResourceResult.model_validate(
            await self.request("resources/read", {"uri": uri})
        )

    async def get_prompt(
        self, name: str, arguments: Dict[str, Any] | None = None
    ) -> GetPromptResult:
        result = await self.request("prompts/get", {"name": name, "arguments": arguments or {}})
        return GetPromptResult.model_validate(result)
