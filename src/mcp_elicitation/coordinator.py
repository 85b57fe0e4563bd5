"""
Elicitation coordinator: issues server-to-client input requests in the middle of a
handler, suspends the handler, and resumes it once the matching reply arrives.

Every request is an explicit state machine (PendingElicitation) stored in the
session's correlation table under its request id. Resumption goes through a
``concurrent.futures.Future`` so the same request can be awaited from an asyncio
handler or blocked on from a worker thread.
"""

import asyncio
import concurrent.futures
import threading
import time
from typing import Any, Callable, Dict, Mapping

from mcp.types import ElicitResult, JSONRPCRequest

from mcp_elicitation.errors import (
    SchemaViolation,
    SessionClosed,
    StaleCorrelation,
    TransportClosed,
)
from mcp_elicitation.logging.logger import get_logger
from mcp_elicitation.outcome import ElicitationOutcome, RequestState
from mcp_elicitation.schema import RequestedSchema, coerce_schema, validate_payload
from mcp_elicitation.session import Session

logger = get_logger(__name__)

ELICITATION_METHOD = "elicitation/create"

DEFAULT_TIMEOUT_SECONDS = 300.0

_UNSET: Any = object()


class PendingElicitation:
    """One entry in a session's correlation table."""

    def __init__(
        self,
        session_id: str,
        request_id: int,
        message: str,
        schema: RequestedSchema,
    ):
        self.session_id = session_id
        self.request_id = request_id
        self.message = message
        self.schema = schema
        self.state = RequestState.PENDING
        self.outcome: ElicitationOutcome | None = None
        self.created_at = time.monotonic()
        self.future: concurrent.futures.Future[ElicitationOutcome] = (
            concurrent.futures.Future()
        )
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"PendingElicitation(session_id={self.session_id!r}, "
            f"request_id={self.request_id}, state={self.state.value})"
        )

    def to_frame(self) -> Dict[str, Any]:
        """The outbound JSON-RPC request for this elicitation."""
        request = JSONRPCRequest(
            jsonrpc="2.0",
            id=self.request_id,
            method=ELICITATION_METHOD,
            params={"message": self.message, "requestedSchema": self.schema.to_wire()},
        )
        return request.model_dump(by_alias=True, mode="json", exclude_none=True)

    def _settle(self, state: RequestState, **fields: Any) -> bool:
        with self._lock:
            if self.state.terminal:
                return False
            self.outcome = ElicitationOutcome(
                request_id=self.request_id, state=state, **fields
            )
            self.state = state
        self.future.set_result(self.outcome)
        return True

    def answer(self, content: Dict[str, Any]) -> bool:
        return self._settle(RequestState.ANSWERED, content=content)

    def decline(
        self, reason: str | None = None, violation: SchemaViolation | None = None
    ) -> bool:
        return self._settle(RequestState.DECLINED, reason=reason, violation=violation)

    def cancel(self, reason: str | None = None) -> bool:
        return self._settle(RequestState.CANCELLED, reason=reason)


def _coerce_reply(reply: "ElicitResult | Mapping[str, Any]") -> ElicitResult:
    if isinstance(reply, ElicitResult):
        return reply
    if "action" not in reply:
        # {content?, declined?} shorthand
        action = "decline" if reply.get("declined") else "accept"
        return ElicitResult(action=action, content=reply.get("content"))
    return ElicitResult.model_validate(reply)


class ElicitationCoordinator:
    """
    Drives elicitation requests for every session of a server.

    The coordinator holds no per-session state of its own: correlation tables live
    on the sessions, so failures in one session never touch another.
    """

    def __init__(self, timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds

    def open_request(
        self,
        session: Session,
        message: str,
        schema: "RequestedSchema | Mapping[str, Any]",
    ) -> PendingElicitation:
        """Record a new Pending request against the session without sending it."""
        if session.closed:
            raise SessionClosed(session.id)
        pending = PendingElicitation(
            session_id=session.id,
            request_id=session.next_request_id(),
            message=message,
            schema=coerce_schema(schema),
        )
        session.track(pending)
        return pending

    async def elicit(
        self,
        session: Session,
        message: str,
        schema: "RequestedSchema | Mapping[str, Any]",
        *,
        timeout_seconds: float | None = _UNSET,
        on_issued: Callable[[PendingElicitation], None] | None = None,
    ) -> ElicitationOutcome:
        """
        Ask the session's client for structured input and wait for the outcome.

        The returned outcome is ANSWERED with a validated payload, DECLINED (by the
        client, or because the payload violated the schema), or CANCELLED (session
        closed, transport dropped, client cancelled, or deadline passed).
        """
        pending = self.open_request(session, message, schema)
        if on_issued:
            on_issued(pending)

        logger.info(
            "Elicitation requested",
            name="elicitation.requested",
            session_id=session.id,
            request_id=pending.request_id,
            elicitation_message=message,
        )

        try:
            if session.transport is None:
                raise TransportClosed(f"Session '{session.id}' has no transport")
            await session.transport.send(pending.to_frame())
        except TransportClosed as e:
            self.cancel(session, pending.request_id, reason=str(e))
            return pending.outcome
        except Exception:
            self.cancel(session, pending.request_id, reason="failed to send request")
            raise

        if timeout_seconds is _UNSET:
            timeout_seconds = self.timeout_seconds
        return await self.wait(session, pending, timeout_seconds)

    async def wait(
        self,
        session: Session,
        pending: PendingElicitation,
        timeout_seconds: float | None = None,
    ) -> ElicitationOutcome:
        """Suspend the calling task until ``pending`` reaches a terminal state."""
        waiter = asyncio.wrap_future(pending.future)
        try:
            # shield: a timeout must not cancel the shared future itself
            return await asyncio.wait_for(asyncio.shield(waiter), timeout_seconds)
        except asyncio.TimeoutError:
            self.cancel(
                session,
                pending.request_id,
                reason=f"no reply within {timeout_seconds:g}s",
            )
            return pending.outcome
        except asyncio.CancelledError:
            self.cancel(session, pending.request_id, reason="invocation cancelled")
            raise

    def wait_blocking(
        self,
        session: Session,
        pending: PendingElicitation,
        timeout_seconds: float | None = None,
    ) -> ElicitationOutcome:
        """Thread-based counterpart of ``wait`` for handlers running off the event loop."""
        try:
            return pending.future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            self.cancel(
                session,
                pending.request_id,
                reason=f"no reply within {timeout_seconds:g}s",
            )
            return pending.outcome

    def resolve(
        self,
        session: Session,
        request_id: int,
        reply: "ElicitResult | Mapping[str, Any]",
    ) -> ElicitationOutcome:
        """
        Settle a pending request with the client's reply.

        Raises:
            StaleCorrelation: no request with this id is pending in this session.
                The reply has no effect.
        """
        pending = session.find_pending(request_id)
        if pending is None or pending.state.terminal:
            logger.warning(
                "Discarding elicitation reply with stale correlation id",
                name="elicitation.stale",
                session_id=session.id,
                request_id=request_id,
            )
            raise StaleCorrelation(session.id, request_id)

        result = _coerce_reply(reply)
        if result.action == "accept":
            try:
                content = validate_payload(result.content, pending.schema)
            except SchemaViolation as violation:
                settled = pending.decline(reason=str(violation), violation=violation)
            else:
                settled = pending.answer(content)
        elif result.action == "decline":
            settled = pending.decline(reason="declined by client")
        else:
            settled = pending.cancel(reason="cancelled by client")

        if not settled:
            # Lost a race with cancel/timeout
            raise StaleCorrelation(session.id, request_id)

        session.untrack(request_id)
        logger.info(
            "Elicitation resolved",
            name="elicitation.resolved",
            session_id=session.id,
            request_id=request_id,
            state=pending.state.value,
        )
        return pending.outcome

    def cancel(
        self, session: Session, request_id: int, reason: str | None = None
    ) -> bool:
        """
        Cancel a pending request. Returns False if it was not pending.
        """
        pending = session.untrack(request_id)
        if pending is None or not pending.cancel(reason):
            return False
        logger.info(
            "Elicitation cancelled",
            name="elicitation.cancelled",
            session_id=session.id,
            request_id=request_id,
            reason=reason,
        )
        return True
