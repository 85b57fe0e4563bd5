"""
Capability registry: the tools, resources and prompts a session exposes.
"""

import inspect
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Literal, Tuple

from mcp.types import Prompt, PromptArgument, Resource, Tool
from pydantic import BaseModel, ConfigDict, Field

from mcp_elicitation.errors import (
    DuplicateCapability,
    InvalidArguments,
    UnknownCapability,
)

if TYPE_CHECKING:
    from mcp_elicitation.context import InvocationContext

CapabilityKind = Literal["tool", "resource", "prompt"]

CapabilityHandler = Callable[..., Any]
"""Called as ``handler(ctx, **arguments)``; may be a plain function or a coroutine function."""

EMPTY_INPUT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}}


class Capability(BaseModel):
    """An invokable, immutable operation exposed by a session."""

    kind: CapabilityKind
    name: str
    handler: CapabilityHandler = Field(exclude=True)

    title: str | None = None
    description: str | None = None

    input_schema: Dict[str, Any] = Field(default_factory=lambda: dict(EMPTY_INPUT_SCHEMA))
    """JSON schema of the arguments (tools) or prompt arguments (prompts)."""

    output_schema: Dict[str, Any] | None = None

    uri: str | None = None
    """Resource URI. Only meaningful for resources."""

    mime_type: str | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def describe(self) -> Dict[str, Any]:
        """Listing entry for tools/list, resources/list or prompts/list."""
        if self.kind == "tool":
            entry = Tool(
                name=self.name,
                title=self.title,
                description=self.description,
                inputSchema=self.input_schema,
                outputSchema=self.output_schema,
            )
        elif self.kind == "resource":
            entry = Resource(
                name=self.name,
                title=self.title,
                uri=self.uri,
                description=self.description,
                mimeType=self.mime_type,
            )
        else:
            required = set(self.input_schema.get("required", []))
            entry = Prompt(
                name=self.name,
                title=self.title,
                description=self.description,
                arguments=[
                    PromptArgument(
                        name=arg_name,
                        description=prop.get("description"),
                        required=arg_name in required,
                    )
                    for arg_name, prop in self.input_schema.get("properties", {}).items()
                ],
            )
        return entry.model_dump(by_alias=True, mode="json", exclude_none=True)

    def bind_arguments(self, ctx: "InvocationContext", arguments: Dict[str, Any]):
        try:
            return inspect.signature(self.handler).bind(ctx, **arguments)
        except TypeError as e:
            raise InvalidArguments(self.kind, self.name, str(e)) from e

    async def call(self, ctx: "InvocationContext", arguments: Dict[str, Any]) -> Any:
        bound = self.bind_arguments(ctx, arguments)
        if inspect.iscoroutinefunction(self.handler):
            return await self.handler(*bound.args, **bound.kwargs)
        result = self.handler(*bound.args, **bound.kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


class CapabilityRegistry:
    """
    Holds the capabilities of one session. Names are unique per kind, so a tool
    and a resource may share a name.
    """

    def __init__(self):
        self._capabilities: Dict[Tuple[CapabilityKind, str], Capability] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._capabilities)

    def copy(self) -> "CapabilityRegistry":
        """A new registry with the same (immutable) capabilities."""
        clone = CapabilityRegistry()
        with self._lock:
            clone._capabilities = dict(self._capabilities)
        return clone

    def add(self, capability: Capability) -> Capability:
        key = (capability.kind, capability.name)
        with self._lock:
            if key in self._capabilities:
                raise DuplicateCapability(capability.kind, capability.name)
            if capability.kind == "resource" and any(
                c.uri == capability.uri
                for c in self._capabilities.values()
                if c.kind == "resource"
            ):
                raise DuplicateCapability("resource", capability.uri or capability.name)
            self._capabilities[key] = capability
        return capability

    def register(
        self,
        name: str,
        handler: CapabilityHandler,
        *,
        kind: CapabilityKind = "tool",
        **metadata: Any,
    ) -> Capability:
        """Register a handler under ``name``. Raises DuplicateCapability if taken."""
        if kind == "resource" and not metadata.get("uri"):
            raise ValueError(f"Resource '{name}' requires a uri")
        return self.add(Capability(kind=kind, name=name, handler=handler, **metadata))

    def tool(
        self,
        name: str | None = None,
        *,
        title: str | None = None,
        description: str | None = None,
        input_schema: Dict[str, Any] | None = None,
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """Decorator registering a tool handler."""

        def decorator(func: CapabilityHandler) -> CapabilityHandler:
            self.register(
                name or func.__name__,
                func,
                kind="tool",
                title=title,
                description=description or inspect.getdoc(func),
                input_schema=input_schema or dict(EMPTY_INPUT_SCHEMA),
            )
            return func

        return decorator

    def resource(
        self,
        uri: str,
        name: str | None = None,
        *,
        title: str | None = None,
        description: str | None = None,
        mime_type: str | None = "text/plain",
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """Decorator registering a resource handler. The handler receives ``uri``."""

        def decorator(func: CapabilityHandler) -> CapabilityHandler:
            self.register(
                name or func.__name__,
                func,
                kind="resource",
                uri=uri,
                title=title,
                description=description or inspect.getdoc(func),
                mime_type=mime_type,
            )
            return func

        return decorator

    def prompt(
        self,
        name: str | None = None,
        *,
        title: str | None = None,
        description: str | None = None,
        arguments_schema: Dict[str, Any] | None = None,
    ) -> Callable[[CapabilityHandler], CapabilityHandler]:
        """Decorator registering a prompt handler."""

        def decorator(func: CapabilityHandler) -> CapabilityHandler:
            self.register(
                name or func.__name__,
                func,
                kind="prompt",
                title=title,
                description=description or inspect.getdoc(func),
                input_schema=arguments_schema or dict(EMPTY_INPUT_SCHEMA),
            )
            return func

        return decorator

    def get(self, name: str, kind: CapabilityKind = "tool") -> Capability:
        capability = self._capabilities.get((kind, name))
        if capability is None:
            raise UnknownCapability(kind, name)
        return capability

    def find_resource(self, uri: str) -> Capability:
        for capability in self.list("resource"):
            if capability.uri == uri:
                return capability
        raise UnknownCapability("resource", uri)

    def list(self, kind: CapabilityKind | None = None) -> List[Capability]:
        with self._lock:
            capabilities = list(self._capabilities.values())
        if kind is None:
            return capabilities
        return [c for c in capabilities if c.kind == kind]

    async def invoke(
        self,
        name: str,
        arguments: Dict[str, Any] | None,
        ctx: "InvocationContext",
        kind: CapabilityKind = "tool",
    ) -> Any:
        """Run the named capability's handler to completion."""
        return await self.get(name, kind).call(ctx, arguments or {})
