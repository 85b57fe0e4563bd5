from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict

from mcp_elicitation.errors import SchemaViolation


class RequestState(str, Enum):
    """Lifecycle of an elicitation request. Every state but PENDING is terminal."""

    PENDING = "pending"
    ANSWERED = "answered"
    DECLINED = "declined"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self is not RequestState.PENDING


class ElicitationOutcome(BaseModel):
    """What a suspended handler resumes with once its request reaches a terminal state."""

    request_id: int
    state: RequestState

    content: Dict[str, Any] | None = None
    """The validated reply payload. Only set when the request was answered."""

    violation: SchemaViolation | None = None
    """Set when the peer replied but the payload did not match the requested schema."""

    reason: str | None = None
    """Why the request was declined or cancelled, when known."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    @property
    def answered(self) -> bool:
        return self.state is RequestState.ANSWERED

    @property
    def declined(self) -> bool:
        return self.state is RequestState.DECLINED

    @property
    def cancelled(self) -> bool:
        return self.state is RequestState.CANCELLED

    def get(self, field: str, default: Any = None) -> Any:
        """Read a reply field, falling back to ``default`` for any non-answered outcome."""
        if not self.answered or self.content is None:
            return default
        value = self.content.get(field)
        return default if value is None else value
