from mcp_elicitation.capabilities import Capability, CapabilityRegistry
from mcp_elicitation.config import Settings, get_settings
from mcp_elicitation.context import InvocationContext
from mcp_elicitation.coordinator import ElicitationCoordinator, PendingElicitation
from mcp_elicitation.errors import (
    ConcurrentElicitation,
    DuplicateCapability,
    ElicitationError,
    InvalidRequestedSchema,
    SchemaViolation,
    SessionClosed,
    SessionNotFound,
    StaleCorrelation,
    TransportClosed,
    UnknownCapability,
)
from mcp_elicitation.outcome import ElicitationOutcome, RequestState
from mcp_elicitation.schema import PrimitiveSchema, RequestedSchema, validate_payload
from mcp_elicitation.server import ElicitationServer
from mcp_elicitation.session import Session, SessionRegistry
from mcp_elicitation.transport import MemoryTransport, Transport

__all__ = [
    "Capability",
    "CapabilityRegistry",
    "ConcurrentElicitation",
    "DuplicateCapability",
    "ElicitationCoordinator",
    "ElicitationError",
    "ElicitationOutcome",
    "ElicitationServer",
    "InvalidRequestedSchema",
    "InvocationContext",
    "MemoryTransport",
    "PendingElicitation",
    "PrimitiveSchema",
    "RequestState",
    "RequestedSchema",
    "SchemaViolation",
    "Session",
    "SessionClosed",
    "SessionNotFound",
    "SessionRegistry",
    "Settings",
    "StaleCorrelation",
    "Transport",
    "TransportClosed",
    "UnknownCapability",
    "get_settings",
    "validate_payload",
]
