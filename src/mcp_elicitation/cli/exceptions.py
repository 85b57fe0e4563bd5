"""Custom exceptions for the mcp-elicitation CLI."""


class CLIError(Exception):
    """Exception for expected CLI errors that should show clean user-facing messages."""

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code
