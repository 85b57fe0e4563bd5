"""
ElicitationServer - routes JSON-RPC frames to sessions, runs capability handlers,
and feeds elicitation replies back to the coordinator.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Mapping, Set, Tuple

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    CallToolResult,
    ElicitResult,
    ErrorData,
    GetPromptResult,
    Implementation,
    InitializeResult,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    PromptMessage,
    PromptsCapability,
    ReadResourceResult,
    ResourcesCapability,
    ServerCapabilities,
    TextContent,
    TextResourceContents,
    ToolsCapability,
)
from pydantic import BaseModel, ValidationError

from mcp_elicitation.capabilities import (
    Capability,
    CapabilityKind,
    CapabilityRegistry,
)
from mcp_elicitation.config import Settings, get_settings
from mcp_elicitation.context import InvocationContext
from mcp_elicitation.coordinator import ElicitationCoordinator
from mcp_elicitation.errors import (
    ElicitationError,
    HandlerFailed,
    InvalidArguments,
    SessionClosed,
    StaleCorrelation,
    TransportClosed,
    UnknownCapability,
)
from mcp_elicitation.logging.logger import event_context, get_logger
from mcp_elicitation.session import Session, SessionRegistry
from mcp_elicitation.transport import Transport

logger = get_logger(__name__)

NO_VALID_SESSION = -32000
"""Reserved error code for frames that do not belong to a live session."""

NO_VALID_SESSION_MESSAGE = "Bad Request: No valid session ID provided"

RequestHandler = Callable[[Session, Any, Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _response(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return JSONRPCResponse(jsonrpc="2.0", id=request_id, result=result).model_dump(
        by_alias=True, mode="json", exclude_none=True
    )


def _error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    # Built by hand: the id may be null when the request could not be parsed
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": ErrorData(code=code, message=message).model_dump(exclude_none=True),
    }


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json", exclude_none=True)


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _is_request(message: Any) -> bool:
    return isinstance(message, Mapping) and "method" in message and "id" in message


class ElicitationServer:
    """
    Serves tools, resources and prompts whose handlers may pause to elicit input
    from the client.

    Every session gets its own copy of the server's capability registry (plus
    whatever the optional ``setup`` callback adds), its own transport, and its own
    correlation table.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        capabilities: CapabilityRegistry | None = None,
        setup: Callable[[CapabilityRegistry], None] | None = None,
        sessions: SessionRegistry | None = None,
        coordinator: ElicitationCoordinator | None = None,
    ):
        self.settings = settings or get_settings()
        self.capabilities = capabilities or CapabilityRegistry()
        self.sessions = sessions or SessionRegistry()
        self.coordinator = coordinator or ElicitationCoordinator(
            timeout_seconds=self.settings.elicitation.timeout_seconds
        )
        self._setup = setup
        self._request_handlers: Dict[str, RequestHandler] = {
            "ping": self._on_ping,
            "tools/list": self._on_tools_list,
            "tools/call": self._on_tools_call,
            "resources/list": self._on_resources_list,
            "resources/read": self._on_resources_read,
            "prompts/list": self._on_prompts_list,
            "prompts/get": self._on_prompts_get,
        }

    @property
    def name(self) -> str:
        return self.settings.server.name

    @property
    def version(self) -> str:
        return self.settings.server.version

    def tool(self, name: str | None = None, **kwargs: Any):
        return self.capabilities.tool(name, **kwargs)

    def resource(self, uri: str, name: str | None = None, **kwargs: Any):
        return self.capabilities.resource(uri, name, **kwargs)

    def prompt(self, name: str | None = None, **kwargs: Any):
        return self.capabilities.prompt(name, **kwargs)

    # ------------------------------------------------------------------ #
    # Session lifecycle
    # ------------------------------------------------------------------ #

    def create_session(self, transport: Transport | None = None) -> Session:
        capabilities = self.capabilities.copy()
        if self._setup:
            self._setup(capabilities)
        session_id = self.sessions.create_session(
            capabilities=capabilities, transport=transport
        )
        return self.sessions.lookup(session_id)

    def close(self, session_id: str | None, reason: str = "session closed") -> None:
        self.sessions.close_session(session_id, reason=reason)

    # ------------------------------------------------------------------ #
    # Inbound invocation boundary
    # ------------------------------------------------------------------ #

    def _context(
        self, session: Session, capability: Capability, request_id: Any = None
    ) -> InvocationContext:
        return InvocationContext(
            session=session,
            coordinator=self.coordinator,
            capability=capability,
            request_id=request_id,
        )

    async def invoke(
        self,
        session_id: str,
        name: str,
        arguments: Dict[str, Any] | None = None,
        kind: CapabilityKind = "tool",
    ) -> Any:
        """Run a capability in the given session and return the handler's raw result."""
        session = self.sessions.lookup(session_id)
        if session.closed:
            raise SessionClosed(session_id)
        capability = session.capabilities.get(name, kind)
        return await capability.call(self._context(session, capability), arguments or {})

    async def dispatch(
        self,
        session_id: str | None,
        message: Any,
        transport: Transport | None = None,
    ) -> Tuple[Dict[str, Any] | None, str | None]:
        """
        Handle one inbound frame.

        Returns the response frame (None for notifications and replies) and the
        session id the frame belongs to. An ``initialize`` request without a
        session id creates a new session bound to ``transport``.
        """
        try:
            parsed = JSONRPCMessage.model_validate(message).root
        except ValidationError as e:
            logger.warning("Rejecting malformed frame", error=str(e))
            msg_id = message.get("id") if isinstance(message, Mapping) else None
            return _error(msg_id, INVALID_REQUEST, "Invalid JSON-RPC message"), session_id

        if isinstance(parsed, JSONRPCRequest) and parsed.method == "initialize":
            if session_id is not None:
                code = INVALID_REQUEST if session_id in self.sessions else NO_VALID_SESSION
                return _error(parsed.id, code, "Session is already initialized"), session_id
            session = self.create_session(transport)
            return _response(parsed.id, self._initialize_result(parsed.params)), session.id

        session = self.sessions.get(session_id)
        if session is None:
            return (
                _error(getattr(parsed, "id", None), NO_VALID_SESSION, NO_VALID_SESSION_MESSAGE),
                None,
            )

        if isinstance(parsed, JSONRPCResponse):
            self._handle_reply(session, parsed.id, parsed.result)
            return None, session.id
        if isinstance(parsed, JSONRPCError):
            cancelled = self.coordinator.cancel(
                session, parsed.id, reason=f"client error: {parsed.error.message}"
            )
            if not cancelled:
                logger.warning(
                    "Discarding error reply with stale correlation id",
                    name="elicitation.stale",
                    session_id=session.id,
                    request_id=parsed.id,
                    error=parsed.error.message,
                )
            return None, session.id
        if isinstance(parsed, JSONRPCNotification):
            self._handle_notification(session, parsed)
            return None, session.id
        return await self._handle_request(session, parsed), session.id

    def _initialize_result(self, params: Dict[str, Any] | None) -> Dict[str, Any]:
        requested = (params or {}).get("protocolVersion")
        result = InitializeResult(
            protocolVersion=requested or LATEST_PROTOCOL_VERSION,
            capabilities=ServerCapabilities(
                tools=ToolsCapability(listChanged=False),
                resources=ResourcesCapability(subscribe=False, listChanged=False),
                prompts=PromptsCapability(listChanged=False),
            ),
            serverInfo=Implementation(name=self.name, version=self.version),
        )
        return _dump(result)

    def _handle_reply(self, session: Session, request_id: Any, result: Dict[str, Any]):
        try:
            reply = ElicitResult.model_validate(result)
        except ValidationError as e:
            logger.warning(
                "Rejecting malformed elicitation reply",
                session_id=session.id,
                request_id=request_id,
                error=str(e),
            )
            return
        try:
            self.coordinator.resolve(session, request_id, reply)
        except StaleCorrelation:
            # Already logged by the coordinator; never surfaced to the client
            pass

    def _handle_notification(self, session: Session, notification: JSONRPCNotification):
        params = notification.params or {}
        if notification.method == "notifications/initialized":
            session.activate()
        elif notification.method == "notifications/cancelled":
            task = session.invocations.get(params.get("requestId"))
            if task is not None and not task.done():
                logger.info(
                    "Client cancelled request",
                    session_id=session.id,
                    request_id=params.get("requestId"),
                    reason=params.get("reason"),
                )
                task.cancel()
        else:
            logger.debug(f"Ignoring notification {notification.method}", session_id=session.id)

    async def _handle_request(
        self, session: Session, request: JSONRPCRequest
    ) -> Dict[str, Any]:
        handler = self._request_handlers.get(request.method)
        if handler is None:
            return _error(request.id, METHOD_NOT_FOUND, f"Method not found: {request.method}")

        task = asyncio.current_task()
        if task is not None:
            session.invocations[request.id] = task
        try:
            result = await handler(session, request.id, request.params or {})
            return _response(request.id, result)
        except (UnknownCapability, InvalidArguments, ValueError, TypeError, KeyError) as e:
            logger.warning(f"Invalid params in request: {e}", session_id=session.id)
            return _error(request.id, INVALID_PARAMS, str(e))
        except SessionClosed as e:
            return _error(request.id, NO_VALID_SESSION, str(e))
        except ElicitationError as e:
            logger.error(f"Error handling {request.method}: {e}", session_id=session.id)
            return _error(request.id, INTERNAL_ERROR, str(e))
        except Exception as e:
            logger.error(
                f"Unhandled error in {request.method}: {e}", session_id=session.id
            )
            return _error(request.id, INTERNAL_ERROR, "Internal server error")
        finally:
            session.invocations.pop(request.id, None)

    # ------------------------------------------------------------------ #
    # Method handlers
    # ------------------------------------------------------------------ #

    async def _on_ping(self, session, request_id, params):
        return {}

    async def _on_tools_list(self, session, request_id, params):
        return {"tools": [c.describe() for c in session.capabilities.list("tool")]}

    async def _on_resources_list(self, session, request_id, params):
        return {"resources": [c.describe() for c in session.capabilities.list("resource")]}

    async def _on_prompts_list(self, session, request_id, params):
        return {"prompts": [c.describe() for c in session.capabilities.list("prompt")]}

    async def _on_tools_call(self, session, request_id, params):
        name = params["name"]
        arguments = params.get("arguments") or {}
        capability = session.capabilities.get(name, "tool")
        ctx = self._context(session, capability, request_id)
        capability.bind_arguments(ctx, arguments)

        try:
            with event_context(logger, f"Tool '{name}'", event_type="debug", session_id=session.id):
                value = await capability.call(ctx, arguments)
        except Exception as e:
            logger.error(f"Tool '{name}' failed: {e}", session_id=session.id)
            return _dump(
                CallToolResult(content=[TextContent(type="text", text=str(e))], isError=True)
            )

        if isinstance(value, dict):
            return value
        if isinstance(value, BaseModel):
            return _dump(value)
        return _dump(
            CallToolResult(content=[TextContent(type="text", text=_as_text(value))], isError=False)
        )

    async def _call_handler(self, session, capability, ctx, arguments):
        # Params are checked before this point, so anything the handler raises
        # is a server-side failure rather than a bad request
        try:
            return await capability.call(ctx, arguments)
        except SessionClosed:
            raise
        except Exception as e:
            logger.error(
                f"{capability.kind.capitalize()} '{capability.name}' failed: {e}",
                session_id=session.id,
            )
            raise HandlerFailed(capability.kind, capability.name, str(e)) from e

    async def _on_resources_read(self, session, request_id, params):
        uri = params["uri"]
        capability = session.capabilities.find_resource(uri)
        ctx = self._context(session, capability, request_id)
        capability.bind_arguments(ctx, {"uri": uri})
        value = await self._call_handler(session, capability, ctx, {"uri": uri})
        if isinstance(value, dict):
            return value
        if isinstance(value, BaseModel):
            return _dump(value)
        return _dump(
            ReadResourceResult(
                contents=[
                    TextResourceContents(
                        uri=uri, mimeType=capability.mime_type, text=_as_text(value)
                    )
                ]
            )
        )

    async def _on_prompts_get(self, session, request_id, params):
        name = params["name"]
        arguments = params.get("arguments") or {}
        capability = session.capabilities.get(name, "prompt")
        ctx = self._context(session, capability, request_id)
        capability.bind_arguments(ctx, arguments)
        value = await self._call_handler(session, capability, ctx, arguments)
        if isinstance(value, dict):
            return value
        if isinstance(value, BaseModel):
            return _dump(value)
        return _dump(
            GetPromptResult(
                description=capability.description,
                messages=[
                    PromptMessage(
                        role="user", content=TextContent(type="text", text=_as_text(value))
                    )
                ],
            )
        )

    # ------------------------------------------------------------------ #
    # Transport loop
    # ------------------------------------------------------------------ #

    async def _send(self, transport: Transport, frame: Dict[str, Any]) -> None:
        try:
            await transport.send(frame)
        except TransportClosed:
            logger.warning("Dropping outbound frame, transport is closed", id=frame.get("id"))

    async def _serve_request(
        self, transport: Transport, session_id: str, message: Dict[str, Any]
    ) -> None:
        response, _ = await self._dispatch_guarded(session_id, message, transport)
        if response is not None:
            await self._send(transport, response)

    async def _dispatch_guarded(
        self, session_id: str | None, message: Any, transport: Transport
    ) -> Tuple[Dict[str, Any] | None, str | None]:
        # One bad frame must not take down the session loop
        try:
            return await self.dispatch(session_id, message, transport=transport)
        except Exception as e:
            logger.error(f"Error handling frame: {e}", session_id=session_id)
            if _is_request(message):
                return (
                    _error(message.get("id"), INTERNAL_ERROR, "Internal server error"),
                    session_id,
                )
            return None, session_id

    async def serve(self, transport: Transport) -> None:
        """
        Run one session over ``transport`` until the peer goes away.

        Requests are handled in their own tasks so that elicitation replies keep
        flowing while handlers are suspended. When the transport drops, the
        session is closed and every pending elicitation is cancelled.
        """
        session_id: str | None = None
        tasks: Set[asyncio.Task] = set()
        try:
            while True:
                try:
                    frame = await transport.receive()
                except TransportClosed:
                    break

                try:
                    message = json.loads(frame)
                except json.JSONDecodeError:
                    logger.warning("Rejecting frame that is not valid JSON")
                    await self._send(transport, _error(None, PARSE_ERROR, "Parse error"))
                    continue

                if (
                    session_id is not None
                    and _is_request(message)
                    and message.get("method") != "initialize"
                ):
                    task = asyncio.create_task(
                        self._serve_request(transport, session_id, message)
                    )
                    tasks.add(task)
                    task.add_done_callback(tasks.discard)
                    continue

                response, resolved_id = await self._dispatch_guarded(
                    session_id, message, transport
                )
                if resolved_id is not None:
                    session_id = resolved_id
                if response is not None:
                    await self._send(transport, response)
        finally:
            self.close(session_id, reason="transport closed")
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            if not transport.closed:
                await transport.close()
