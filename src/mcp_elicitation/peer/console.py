import asyncio
from typing import Any, Dict, Optional

from mcp.types import ElicitResult
from rich.panel import Panel

from mcp_elicitation.console import console
from mcp_elicitation.logging.logger import get_logger
from mcp_elicitation.peer.types import ElicitRequest

logger = get_logger(__name__)

SLASH_COMMANDS = {
    "/decline": "Decline the elicitation request.",
    "/cancel": "Cancel the elicitation request.",
    "/help": "Show available commands",
}


class SlashCommandResult:
    def __init__(self, command: str, action: str):
        self.command = command
        self.action = action


def _process_slash_command(input_text: str) -> Optional[SlashCommandResult]:
    """Detect and map slash commands to actions."""
    if not input_text.startswith("/"):
        return None
    cmd = input_text.strip().lower()
    action = {
        "/decline": "decline",
        "/cancel": "cancel",
        "/help": "help",
    }.get(cmd, "unknown" if cmd != "/" else "help")

    if action == "unknown":
        console.print(f"\n[red]Unknown command: {cmd}[/red]")
        console.print("[dim]Type /help for available commands[/dim]\n")
    return SlashCommandResult(cmd, action)


def _print_slash_help() -> None:
    """Display available slash commands."""
    console.print("\n[cyan]Available commands:[/cyan]")
    for cmd, desc in SLASH_COMMANDS.items():
        console.print(f"  [green]{cmd}[/green] - {desc}")
    console.print()


def _process_field_value(props: Dict[str, Any], value: str) -> Any:
    field_type = props.get("type", "string")
    if field_type == "boolean":
        v = value.lower()
        if v in ("true", "yes", "y", "1"):
            return True
        if v in ("false", "no", "n", "0"):
            return False
        console.print(f"[red]Invalid boolean value: {value}[/red]")
        return None
    if field_type == "number":
        try:
            return float(value)
        except ValueError:
            console.print(f"[red]Invalid number: {value}[/red]")
            return None
    if field_type == "integer":
        try:
            return int(value)
        except ValueError:
            console.print(f"[red]Invalid integer: {value}[/red]")
            return None
    if props.get("enum") and value not in props["enum"]:
        console.print(f"[red]Expected one of: {', '.join(props['enum'])}[/red]")
        return None
    return value


def _create_panel(request: ElicitRequest) -> Panel:
    """Generate styled panel for prompts."""
    title = (
        f"ELICITATION RESPONSE NEEDED FROM: {request.server_name}"
        if request.server_name
        else "ELICITATION RESPONSE NEEDED"
    )
    content = f"[bold]Elicitation Request[/bold]\n\n{request.message}"
    content += "\n\n[dim]Type / to see available commands[/dim]"
    return Panel(
        content, title=title, style="blue", border_style="bold white", padding=(1, 2)
    )


async def _read_line(prompt: str) -> str:
    # console.input blocks; keep the event loop (and the server sharing it) running
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, console.input, prompt)


async def _collect_fields(request: ElicitRequest) -> Dict[str, Any] | str:
    """
    Prompt for each field of the requested schema.
    Returns the collected content, or the action name if the user bailed out.
    """
    schema = request.requestedSchema
    if not schema or "properties" not in schema:
        raise ValueError("Invalid schema: must contain 'properties'")

    required = set(schema.get("required", []))
    result: Dict[str, Any] = {}
    for name, props in schema["properties"].items():
        prompt_text = f"Enter {name}"
        if desc := props.get("description"):
            prompt_text += f" - {desc}"
        if name in required:
            prompt_text += " (required)"
        default = props.get("default")
        loop_prompt = (
            f"{prompt_text}{f' [default: {default}]' if default is not None else ''}"
        )

        while True:
            console.print(f"\n{loop_prompt}", style="cyan", markup=False)
            console.print("[dim]Type / to see available commands[/dim]")
            field_type = props.get("type", "string")
            if field_type == "boolean":
                console.print("[dim]Enter: true/false, yes/no, y/n, or 1/0[/dim]")
            elif field_type == "number":
                console.print("[dim]Enter a decimal number[/dim]")
            elif field_type == "integer":
                console.print("[dim]Enter a whole number[/dim]")

            if default is not None:
                console.print(f"[dim]Press Enter to accept default [{default}][/dim]")

            value = (await _read_line("> ")).strip() or (
                str(default) if default is not None else ""
            )
            cmd_result = _process_slash_command(value)
            if cmd_result:
                if cmd_result.action in ("decline", "cancel"):
                    return cmd_result.action
                if cmd_result.action == "help":
                    _print_slash_help()
                continue

            if not value:
                if name in required:
                    console.print(f"[red]{name} is required[/red]")
                    continue
                break

            processed = _process_field_value(props, value)
            if processed is not None:
                result[name] = processed
                break
    return result


async def console_elicitation_callback(request: ElicitRequest) -> ElicitResult:
    """Handle an elicitation request in the console."""
    console.print(_create_panel(request))
    response = await _collect_fields(request)
    if isinstance(response, str):
        logger.info(f"User chose to {response} elicitation", request_id=request.request_id)
        return ElicitResult(action=response)

    logger.info("User accepted elicitation", data=response)
    return ElicitResult(action="accept", content=response)
