"""
Exception taxonomy for the elicitation server.
"""

from typing import Any, List, Tuple


class ElicitationError(Exception):
    """Base class for all elicitation server errors."""


class SessionNotFound(ElicitationError):
    """No active session is registered under the given id."""

    def __init__(self, session_id: str | None):
        super().__init__(f"Session '{session_id}' not found")
        self.session_id = session_id


class SessionClosed(ElicitationError):
    """The session has been closed and rejects further activity."""

    def __init__(self, session_id: str):
        super().__init__(f"Session '{session_id}' is closed")
        self.session_id = session_id


class DuplicateCapability(ElicitationError):
    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind.capitalize()} '{name}' is already registered")
        self.kind = kind
        self.name = name


class UnknownCapability(ElicitationError):
    def __init__(self, kind: str, name: str):
        super().__init__(f"Unknown {kind}: '{name}'")
        self.kind = kind
        self.name = name


class StaleCorrelation(ElicitationError):
    """A reply arrived for a request id that is unknown or no longer pending."""

    def __init__(self, session_id: str, request_id: Any):
        super().__init__(
            f"No pending elicitation request '{request_id}' in session '{session_id}'"
        )
        self.session_id = session_id
        self.request_id = request_id


class ConcurrentElicitation(ElicitationError):
    """A handler tried to elicit while one of its requests is still pending."""

    def __init__(self, request_id: Any):
        super().__init__(
            f"Elicitation request '{request_id}' is still pending for this invocation"
        )
        self.request_id = request_id


class InvalidRequestedSchema(ElicitationError):
    """The server built a requested schema outside the supported primitive subset."""


class TransportClosed(ElicitationError):
    """The underlying transport was closed or dropped."""


class SchemaViolation(ElicitationError):
    """
    A reply payload did not satisfy the requested schema.
    All individual violations are collected; the payload is rejected as a whole.
    """

    def __init__(self, violations: List[Tuple[str, str]]):
        self.violations = list(violations)
        details = "; ".join(f"{field}: {message}" for field, message in self.violations)
        super().__init__(f"Payload does not match requested schema ({details})")

    @property
    def fields(self) -> List[str]:
        return [field for field, _ in self.violations]


class InvalidArguments(ElicitationError):
    """Arguments do not fit the capability handler's signature."""

    def __init__(self, kind: str, name: str, detail: str):
        super().__init__(f"Invalid arguments for {kind} '{name}': {detail}")
        self.kind = kind
        self.name = name


class RemoteError(ElicitationError):
    """The other side answered a request with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.data = data


class HandlerFailed(ElicitationError):
    """A resource or prompt handler raised while producing its result."""

    def __init__(self, kind: str, name: str, detail: str):
        super().__init__(f"{kind.capitalize()} '{name}' failed: {detail}")
        self.kind = kind
        self.name = name
