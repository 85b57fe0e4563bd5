import pytest

from mcp_elicitation.capabilities import Capability, CapabilityRegistry
from mcp_elicitation.errors import DuplicateCapability, InvalidArguments, UnknownCapability


class TestCapabilityRegistry:
    """Registration, lookup and listing of capabilities."""

    @pytest.fixture
    def registry(self):
        return CapabilityRegistry()

    def test_register_and_get(self, registry):
        def handler(ctx):
            return "hi"

        capability = registry.register("hello", handler, description="Say hi")
        assert registry.get("hello") is capability
        assert capability.kind == "tool"

    def test_duplicate_name_same_kind(self, registry):
        registry.register("hello", lambda ctx: "a")
        with pytest.raises(DuplicateCapability):
            registry.register("hello", lambda ctx: "b")

    def test_same_name_different_kind(self, registry):
        registry.register("greeting", lambda ctx: "tool")
        registry.register("greeting", lambda ctx, uri: "res", kind="resource", uri="config://user")
        assert registry.get("greeting", "tool").kind == "tool"
        assert registry.get("greeting", "resource").uri == "config://user"

    def test_duplicate_resource_uri(self, registry):
        registry.register("a", lambda ctx, uri: "", kind="resource", uri="config://user")
        with pytest.raises(DuplicateCapability):
            registry.register("b", lambda ctx, uri: "", kind="resource", uri="config://user")

    def test_resource_requires_uri(self, registry):
        with pytest.raises(ValueError):
            registry.register("a", lambda ctx, uri: "", kind="resource")

    def test_unknown_capability(self, registry):
        with pytest.raises(UnknownCapability):
            registry.get("nope")
        with pytest.raises(UnknownCapability):
            registry.find_resource("config://nope")

    def test_capabilities_are_immutable(self, registry):
        capability = registry.register("hello", lambda ctx: "hi")
        with pytest.raises(Exception):
            capability.name = "other"

    def test_copy_is_independent(self, registry):
        registry.register("hello", lambda ctx: "hi")
        clone = registry.copy()
        clone.register("extra", lambda ctx: "x")
        assert len(clone) == 2
        assert len(registry) == 1

    def test_decorators(self, registry):
        @registry.tool("add", input_schema={"type": "object", "properties": {"a": {"type": "number"}}})
        def add(ctx, a: float):
            """Add one."""
            return a + 1

        @registry.resource("config://motd")
        def motd(ctx, uri):
            return "hello"

        @registry.prompt(
            "ask",
            arguments_schema={
                "type": "object",
                "properties": {"topic": {"type": "string", "description": "What to ask about"}},
                "required": ["topic"],
            },
        )
        def ask(ctx, topic):
            return f"Tell me about {topic}"

        assert registry.get("add").description == "Add one."
        assert registry.find_resource("config://motd").name == "motd"
        assert [c.name for c in registry.list("prompt")] == ["ask"]
        assert len(registry.list()) == 3

    def test_describe_entries(self, registry):
        registry.register("greeting", lambda ctx: "", title="Greeting Tool", description="Greet")
        registry.register(
            "greeting", lambda ctx, uri: "", kind="resource", uri="config://user",
            mime_type="text/plain",
        )
        registry.register(
            "ask",
            lambda ctx, topic: "",
            kind="prompt",
            input_schema={
                "type": "object",
                "properties": {"topic": {"type": "string"}},
                "required": ["topic"],
            },
        )

        tool = registry.get("greeting").describe()
        assert tool["name"] == "greeting"
        assert tool["title"] == "Greeting Tool"
        assert tool["inputSchema"] == {"type": "object", "properties": {}}

        resource = registry.get("greeting", "resource").describe()
        assert resource["uri"] == "config://user"
        assert resource["mimeType"] == "text/plain"

        prompt = registry.get("ask", "prompt").describe()
        assert prompt["arguments"] == [{"name": "topic", "required": True}]


class TestCapabilityCall:
    """Calling handlers through a capability."""

    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        async def async_handler(ctx, x):
            return x * 2

        def sync_handler(ctx, x):
            return x + 1

        a = Capability(kind="tool", name="a", handler=async_handler)
        b = Capability(kind="tool", name="b", handler=sync_handler)
        assert await a.call(None, {"x": 2}) == 4
        assert await b.call(None, {"x": 2}) == 3

    @pytest.mark.asyncio
    async def test_bad_arguments(self):
        capability = Capability(kind="tool", name="a", handler=lambda ctx, x: x)
        with pytest.raises(InvalidArguments):
            await capability.call(None, {"y": 1})
        with pytest.raises(InvalidArguments):
            await capability.call(None, {})

    @pytest.mark.asyncio
    async def test_registry_invoke(self):
        registry = CapabilityRegistry()
        registry.register("echo", lambda ctx, text: text)
        assert await registry.invoke("echo", {"text": "hi"}, ctx=None) == "hi"
