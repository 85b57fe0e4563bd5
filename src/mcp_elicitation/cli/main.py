"""mcp-elicitation CLI entry point."""

import asyncio
import json
from pathlib import Path
from typing import Optional

import click
import typer
from rich.console import Console
from rich.panel import Panel
from typer.core import TyperGroup

from mcp_elicitation.cli.exceptions import CLIError
from mcp_elicitation.config import Settings, get_settings
from mcp_elicitation.console import console, error_console
from mcp_elicitation.errors import InvalidRequestedSchema, SchemaViolation
from mcp_elicitation.greeting import create_greeting_server
from mcp_elicitation.logging.events import EventFilter
from mcp_elicitation.logging.logger import LoggingConfig
from mcp_elicitation.peer.client import ElicitationPeer
from mcp_elicitation.peer.console import console_elicitation_callback
from mcp_elicitation.peer.types import ElicitationCallback
from mcp_elicitation.schema import RequestedSchema, validate_payload
from mcp_elicitation.transport import MemoryTransport

DEMO_KINDS = ("tool", "resource", "prompt")


class HelpfulTyperGroup(TyperGroup):
    """Typer group that shows help before usage errors for better UX."""

    def resolve_command(self, ctx, args):
        try:
            return super().resolve_command(ctx, args)
        except click.UsageError as e:
            click.echo(ctx.get_help())

            stderr = Console(stderr=True)
            error_panel = Panel(
                str(e),
                title="Error",
                title_align="left",
                border_style="red",
                expand=True,
            )
            stderr.print(error_panel)
            ctx.exit(2)

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except CLIError as e:
            error_console.print(f"[bold red]ERROR:[/bold red] {e}")
            ctx.exit(e.exit_code)


app = typer.Typer(
    help="Demo server for mid-call elicitation of structured user input",
    no_args_is_help=True,
    cls=HelpfulTyperGroup,
)


async def run_demo(
    settings: Settings,
    kind: str = "tool",
    callback: ElicitationCallback = console_elicitation_callback,
) -> str:
    """
    Run one in-process session against the greeting capabilities and return the
    text the server produced.
    """
    server = create_greeting_server(settings)
    server_side, client_side = MemoryTransport.create_pair()
    serving = asyncio.create_task(server.serve(server_side))

    async with ElicitationPeer(client_side, callback) as peer:
        await peer.initialize()
        if kind == "tool":
            result = await peer.call_tool("greeting")
            text = result.content[0].text
        elif kind == "resource":
            result = await peer.read_resource("config://user")
            text = result.contents[0].text
        else:
            result = await peer.get_prompt("greeting-prompt")
            text = result.messages[0].content.text

    await serving
    return text


async def _run_with_logging(
    settings: Settings, kind: str, log_level: Optional[str] = None
) -> str:
    async with LoggingConfig.managed(
        event_filter=EventFilter(min_level=settings.logger.level),
        logger_type=settings.logger.type,
        show_path=settings.logger.show_path,
    ):
        if log_level is not None:
            LoggingConfig.set_min_level(log_level)
        return await run_demo(settings, kind, console_elicitation_callback)


@app.command()
def demo(
    kind: str = typer.Option(
        "tool", "--kind", "-k", help="Which greeting to invoke: tool, resource or prompt."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", "-t", help="Seconds to wait for each answer before cancelling."
    ),
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to an mcp-elicitation.config.yaml file."
    ),
    log_level: Optional[str] = typer.Option(
        None, "--log-level", "-l", help="Minimum log level: debug, info, warning or error."
    ),
) -> None:
    """Invoke a greeting capability and answer its elicitation from the console."""
    if kind not in DEMO_KINDS:
        raise CLIError(f"Unknown kind '{kind}'. Expected one of: {', '.join(DEMO_KINDS)}")

    try:
        settings = get_settings(config).model_copy(deep=True)
    except FileNotFoundError as e:
        raise CLIError(str(e)) from e
    if timeout is not None:
        if timeout <= 0:
            raise CLIError("--timeout must be positive")
        settings.elicitation.timeout_seconds = timeout

    text = asyncio.run(_run_with_logging(settings, kind, log_level))
    console.print(Panel(text, title=f"greeting {kind}", border_style="green"))


def _load_json(value: str, label: str):
    path = Path(value)
    try:
        raw = path.read_text(encoding="utf-8") if path.is_file() else value
    except OSError as e:
        raise CLIError(f"Could not read {label}: {e}") from e
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise CLIError(f"{label} is not valid JSON: {e}") from e


@app.command()
def validate(
    schema: str = typer.Argument(..., help="Requested schema as JSON text or a path to a JSON file."),
    payload: str = typer.Argument(..., help="Reply payload as JSON text or a path to a JSON file."),
) -> None:
    """Check a reply payload against a requested schema."""
    try:
        requested = RequestedSchema.from_dict(_load_json(schema, "schema"))
    except InvalidRequestedSchema as e:
        raise CLIError(str(e)) from e

    try:
        content = validate_payload(_load_json(payload, "payload"), requested)
    except SchemaViolation as violation:
        for field, message in violation.violations:
            console.print(f"[red]✗[/red] [bold]{field}[/bold]: {message}")
        raise typer.Exit(1)

    console.print("[green]✓[/green] payload is valid")
    console.print_json(data=content)


def run() -> None:
    """Run the CLI application."""
    app()


if __name__ == "__main__":
    run()
