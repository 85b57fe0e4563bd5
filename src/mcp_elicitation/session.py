"""
Sessions and the registry that owns them.

A session is one long-lived logical connection between a single client and this
server. It owns its capability registry, its transport, and the correlation table
of elicitation requests that are still waiting on the client.
"""

import itertools
import threading
import time
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List

from mcp_elicitation.capabilities import CapabilityRegistry
from mcp_elicitation.errors import SessionNotFound
from mcp_elicitation.logging.logger import get_logger

if TYPE_CHECKING:
    import asyncio

    from mcp_elicitation.coordinator import PendingElicitation
    from mcp_elicitation.transport import Transport

logger = get_logger(__name__)

SessionCallback = Callable[[str], None]


class SessionStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    CLOSED = "closed"


class Session:
    """State for a single client session."""

    def __init__(
        self,
        session_id: str,
        capabilities: CapabilityRegistry,
        transport: "Transport | None" = None,
    ):
        self.id = session_id
        self.capabilities = capabilities
        self.transport = transport
        self.status = SessionStatus.CREATED
        self.created_at = time.time()
        self.close_reason: str | None = None

        # Correlation table: request id -> request still awaiting a reply
        self.pending: Dict[int, "PendingElicitation"] = {}
        # Inbound client requests currently being handled, keyed by JSON-RPC id
        self.invocations: Dict[int | str, "asyncio.Task"] = {}

        self._request_ids = itertools.count(1)
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Session(id={self.id!r}, status={self.status.value}, pending={len(self.pending)})"

    @property
    def closed(self) -> bool:
        return self.status is SessionStatus.CLOSED

    def activate(self) -> None:
        if self.status is SessionStatus.CREATED:
            self.status = SessionStatus.ACTIVE

    def next_request_id(self) -> int:
        with self._lock:
            return next(self._request_ids)

    def track(self, pending: "PendingElicitation") -> None:
        with self._lock:
            self.pending[pending.request_id] = pending

    def untrack(self, request_id: int) -> "PendingElicitation | None":
        with self._lock:
            return self.pending.pop(request_id, None)

    def find_pending(self, request_id: int) -> "PendingElicitation | None":
        with self._lock:
            return self.pending.get(request_id)

    def close(self, reason: str = "session closed") -> List["PendingElicitation"]:
        """
        Mark the session closed and cancel every request still pending in it.
        Returns the requests that were cancelled.
        """
        with self._lock:
            if self.status is SessionStatus.CLOSED:
                return []
            self.status = SessionStatus.CLOSED
            self.close_reason = reason
            outstanding = list(self.pending.values())
            self.pending.clear()

        return [p for p in outstanding if p.cancel(reason)]


class SessionRegistry:
    """
    Maps opaque session ids to live sessions.

    Each server owns its own registry, so several isolated servers can run in one
    process (e.g. in tests).
    """

    def __init__(
        self,
        on_session_initialized: SessionCallback | None = None,
        on_session_closed: SessionCallback | None = None,
    ):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._on_initialized = on_session_initialized
        self._on_closed = on_session_closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def create_session(
        self,
        capabilities: CapabilityRegistry | None = None,
        transport: "Transport | None" = None,
    ) -> str:
        """Allocate a fresh session and return its id."""
        session_id = str(uuid.uuid4())
        session = Session(
            session_id,
            capabilities=capabilities or CapabilityRegistry(),
            transport=transport,
        )
        with self._lock:
            self._sessions[session_id] = session

        logger.info("Session initialized", name="session.initialized", session_id=session_id)
        if self._on_initialized:
            self._on_initialized(session_id)
        return session_id

    def lookup(self, session_id: str | None) -> Session:
        with self._lock:
            session = self._sessions.get(session_id) if session_id else None
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def get(self, session_id: str | None) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id) if session_id else None

    def close_session(self, session_id: str | None, reason: str = "session closed") -> None:
        """
        Remove a session and cancel its pending elicitations.
        Unknown or already-closed ids are ignored.
        """
        with self._lock:
            session = self._sessions.pop(session_id, None) if session_id else None
        if session is None:
            return

        cancelled = session.close(reason)
        logger.info(
            "Session closed",
            name="session.closed",
            session_id=session_id,
            reason=reason,
            cancelled_requests=[p.request_id for p in cancelled],
        )
        if self._on_closed:
            self._on_closed(session_id)

    def close_all(self, reason: str = "server shutdown") -> None:
        for session_id in self.session_ids():
            self.close_session(session_id, reason=reason)
