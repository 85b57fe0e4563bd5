"""
Events and event filters for the logger module.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Set

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal["debug", "info", "warning", "error"]
"""Broad categories for events (severity levels)."""

_LEVEL_ORDER: Dict[str, int] = {"debug": 10, "info": 20, "warning": 30, "error": 40}


class EventContext(BaseModel):
    """
    Stores correlation info attached to an event.
    """

    session_id: str | None = None
    request_id: int | str | None = None

    model_config = ConfigDict(extra="allow")


class Event(BaseModel):
    """
    Core event structure. `type` is the severity, `name` an optional
    domain-specific event name such as "elicitation.resolved".
    """

    type: EventType
    name: str | None = None
    namespace: str
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    data: Dict[str, Any] = Field(default_factory=dict)
    context: EventContext | None = None


class EventFilter(BaseModel):
    """
    Filter events by type, name, namespace prefix and minimum severity.
    An empty set means "no constraint" for that field.
    """

    types: Set[EventType] | None = Field(default_factory=set)
    names: Set[str] | None = Field(default_factory=set)
    namespaces: Set[str] | None = Field(default_factory=set)
    min_level: EventType | None = "debug"

    def matches(self, event: Event) -> bool:
        if self.types and event.type not in self.types:
            return False
        if self.names and event.name not in self.names:
            return False
        if self.namespaces and not any(
            event.namespace.startswith(ns) for ns in self.namespaces
        ):
            return False
        if self.min_level and _LEVEL_ORDER[event.type] < _LEVEL_ORDER[self.min_level]:
            return False
        return True
