from typing import Any, Dict, List, Mapping

from mcp_elicitation.capabilities import Capability
from mcp_elicitation.coordinator import ElicitationCoordinator, PendingElicitation
from mcp_elicitation.errors import ConcurrentElicitation
from mcp_elicitation.logging.logger import Logger
from mcp_elicitation.outcome import ElicitationOutcome
from mcp_elicitation.schema import RequestedSchema
from mcp_elicitation.session import Session


class InvocationContext:
    """
    Handed to a capability handler for the duration of one invocation.

    ``elicit`` is the only place a handler suspends. Requests from one invocation
    are strictly sequential: asking again while a request is still pending raises
    ConcurrentElicitation.
    """

    def __init__(
        self,
        session: Session,
        coordinator: ElicitationCoordinator,
        capability: Capability | None = None,
        request_id: int | str | None = None,
    ):
        self.session = session
        self.coordinator = coordinator
        self.capability = capability
        self.request_id = request_id
        self.outcomes: List[ElicitationOutcome] = []
        self._in_flight: PendingElicitation | None = None
        self._busy = False

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def logger(self) -> Logger:
        namespace = "mcp_elicitation.handler"
        if self.capability is not None:
            namespace = f"{namespace}.{self.capability.name}"
        # Not cached: the shared per-namespace logger must not carry one session's id
        return Logger(namespace, session_id=self.session.id)

    @property
    def in_flight(self) -> PendingElicitation | None:
        """The request this invocation is currently waiting on, if any."""
        return self._in_flight

    def _issued(self, pending: PendingElicitation) -> None:
        self._in_flight = pending

    async def elicit(
        self,
        message: str,
        schema: "RequestedSchema | Mapping[str, Any]",
        **kwargs: Any,
    ) -> ElicitationOutcome:
        if self._busy:
            raise ConcurrentElicitation(
                self._in_flight.request_id if self._in_flight else None
            )
        self._busy = True
        try:
            outcome = await self.coordinator.elicit(
                self.session, message, schema, on_issued=self._issued, **kwargs
            )
        finally:
            self._busy = False
            self._in_flight = None
        self.outcomes.append(outcome)
        return outcome

    def describe(self) -> Dict[str, Any]:
        return {
            "session_id": self.session.id,
            "capability": self.capability.name if self.capability else None,
            "request_id": self.request_id,
            "elicitations": len(self.outcomes),
        }
