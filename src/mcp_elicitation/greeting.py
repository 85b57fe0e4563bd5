"""
Greeting capabilities: one tool, one resource and one prompt, each of which asks
the client for the user's name before answering.
"""

from mcp_elicitation.capabilities import CapabilityRegistry
from mcp_elicitation.config import Settings
from mcp_elicitation.context import InvocationContext
from mcp_elicitation.server import ElicitationServer

ELICITATION_MESSAGE = "Please input your name"

NAME_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "The name of the user"},
    },
    "required": ["name"],
}

OPTIONAL_NAME_SCHEMA = {
    "type": "object",
    "properties": {"name": {"type": "string"}},
}


async def greeting_tool(ctx: InvocationContext) -> str:
    outcome = await ctx.elicit(ELICITATION_MESSAGE, NAME_SCHEMA)
    ctx.logger.info(f"Elicitation result: {outcome.state.value}", content=outcome.content)
    return f"Hello {outcome.get('name', 'Stranger')}"


async def greeting_resource(ctx: InvocationContext, uri: str) -> str:
    outcome = await ctx.elicit(ELICITATION_MESSAGE, OPTIONAL_NAME_SCHEMA)
    ctx.logger.info(f"Elicitation result: {outcome.state.value}", content=outcome.content)
    return f"Hello there, {outcome.get('name', 'Stranger')}"


async def greeting_prompt(ctx: InvocationContext) -> str:
    outcome = await ctx.elicit(ELICITATION_MESSAGE, OPTIONAL_NAME_SCHEMA)
    name = outcome.get("name")
    if name:
        return f"Please greet me by my name:\n\n{name}"
    return "I am unnamed :p"


def register_greetings(registry: CapabilityRegistry) -> CapabilityRegistry:
    registry.register(
        "greeting",
        greeting_tool,
        kind="tool",
        title="Greeting Tool",
        description="Greet the user",
    )
    registry.register(
        "greeting",
        greeting_resource,
        kind="resource",
        uri="config://user",
        title="User Greeting",
        description="Greet the user",
        mime_type="text/plain",
    )
    registry.register(
        "greeting-prompt",
        greeting_prompt,
        kind="prompt",
        title="User greeting",
        description="Greet the user by their name",
    )
    return registry


def create_greeting_server(settings: Settings | None = None, **kwargs) -> ElicitationServer:
    """An ElicitationServer whose sessions expose the greeting capabilities."""
    server = ElicitationServer(settings, **kwargs)
    register_greetings(server.capabilities)
    return server
