from typing import Any, Dict, Protocol

from mcp.types import ElicitResult, ErrorData
from pydantic import BaseModel, ConfigDict


class ElicitRequest(BaseModel):
    """An elicitation/create request as seen by the client."""

    request_id: int | str
    message: str
    requestedSchema: Dict[str, Any]

    server_name: str | None = None
    """Name of the server making the elicitation request"""

    model_config = ConfigDict(extra="allow")


class ElicitationCallback(Protocol):
    """Protocol for callbacks that handle elicitations."""

    async def __call__(self, request: ElicitRequest) -> ElicitResult | ErrorData:
        """Handle an elicitation request.

        Args:
            request (ElicitRequest): The elicitation request to handle

        Returns:
            ElicitResult | ErrorData: The response to send back to the server
        """
        ...
