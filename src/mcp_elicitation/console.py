"""
Shared rich consoles for user-facing output.
"""

from rich.console import Console

console = Console(color_system="auto")

error_console = Console(stderr=True)
