import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest
from mcp.types import ElicitResult

from mcp_elicitation.capabilities import CapabilityRegistry
from mcp_elicitation.context import InvocationContext
from mcp_elicitation.coordinator import ELICITATION_METHOD, ElicitationCoordinator
from mcp_elicitation.errors import (
    ConcurrentElicitation,
    InvalidRequestedSchema,
    SessionClosed,
    StaleCorrelation,
)
from mcp_elicitation.outcome import RequestState
from mcp_elicitation.session import Session, SessionRegistry
from mcp_elicitation.transport import MemoryTransport

from conftest import CONTACT_SCHEMA, NAME_SCHEMA, next_frame


class TestElicit:
    """Issuing a request and resuming with the client's reply."""

    @pytest.mark.asyncio
    async def test_outbound_frame(self, coordinator, session, client_side):
        task = asyncio.create_task(
            coordinator.elicit(session, "Please input your name", NAME_SCHEMA)
        )
        frame = await next_frame(client_side)

        assert frame == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": ELICITATION_METHOD,
            "params": {"message": "Please input your name", "requestedSchema": NAME_SCHEMA},
        }
        assert session.find_pending(1).state is RequestState.PENDING

        coordinator.cancel(session, 1)
        await task

    @pytest.mark.asyncio
    async def test_answered_with_name(self, coordinator, session, client_side):
        task = asyncio.create_task(
            coordinator.elicit(session, "Please input your name", NAME_SCHEMA)
        )
        frame = await next_frame(client_side)
        coordinator.resolve(
            session, frame["id"], ElicitResult(action="accept", content={"name": "Ada"})
        )

        outcome = await task
        assert outcome.answered
        assert outcome.content == {"name": "Ada"}
        assert outcome.get("name", "Stranger") == "Ada"
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_declined_falls_back_to_default(self, coordinator, session, client_side):
        task = asyncio.create_task(
            coordinator.elicit(session, "Please input your name", NAME_SCHEMA)
        )
        frame = await next_frame(client_side)
        coordinator.resolve(session, frame["id"], {"action": "decline"})

        outcome = await task
        assert outcome.declined
        assert outcome.violation is None
        assert outcome.content is None
        assert outcome.get("name", "Stranger") == "Stranger"

    @pytest.mark.asyncio
    async def test_declined_shorthand(self, coordinator, session, client_side):
        task = asyncio.create_task(coordinator.elicit(session, "Name?", NAME_SCHEMA))
        frame = await next_frame(client_side)
        coordinator.resolve(session, frame["id"], {"declined": True})
        assert (await task).declined

    @pytest.mark.asyncio
    async def test_schema_violation_declines(self, coordinator, session, client_side):
        task = asyncio.create_task(coordinator.elicit(session, "Contact?", CONTACT_SCHEMA))
        frame = await next_frame(client_side)
        outcome = coordinator.resolve(
            session, frame["id"], {"action": "accept", "content": {"name": "Ada"}}
        )

        assert outcome is await task
        assert outcome.declined
        assert outcome.content is None
        assert outcome.violation.fields == ["email"]
        assert outcome.get("name") is None

    @pytest.mark.asyncio
    async def test_client_cancel(self, coordinator, session, client_side):
        task = asyncio.create_task(coordinator.elicit(session, "Name?", NAME_SCHEMA))
        frame = await next_frame(client_side)
        coordinator.resolve(session, frame["id"], {"action": "cancel"})

        outcome = await task
        assert outcome.cancelled
        assert outcome.reason == "cancelled by client"

    @pytest.mark.asyncio
    async def test_invalid_requested_schema_is_never_sent(self, coordinator, session, client_side):
        with pytest.raises(InvalidRequestedSchema):
            await coordinator.elicit(
                session, "Where?", {"type": "object", "properties": {"a": {"type": "array"}}}
            )
        assert session.pending == {}
        assert client_side._inbound.empty()


class TestResolve:
    """Correlation of replies to pending requests."""

    @pytest.mark.asyncio
    async def test_stale_reply_after_answer(self, coordinator, session, client_side):
        task = asyncio.create_task(coordinator.elicit(session, "Name?", NAME_SCHEMA))
        frame = await next_frame(client_side)
        coordinator.resolve(session, frame["id"], {"action": "accept", "content": {"name": "Ada"}})
        outcome = await task

        with pytest.raises(StaleCorrelation):
            coordinator.resolve(
                session, frame["id"], {"action": "accept", "content": {"name": "Grace"}}
            )
        assert outcome.state is RequestState.ANSWERED
        assert outcome.get("name") == "Ada"

    def test_unknown_id(self, coordinator, session):
        with pytest.raises(StaleCorrelation):
            coordinator.resolve(session, 42, {"action": "accept", "content": {}})

    def test_reply_from_another_session_is_stale(self, coordinator):
        registry = SessionRegistry()
        a = registry.lookup(registry.create_session())
        b = registry.lookup(registry.create_session())
        pending = coordinator.open_request(a, "Name?", NAME_SCHEMA)

        with pytest.raises(StaleCorrelation):
            coordinator.resolve(b, pending.request_id, {"content": {"name": "Ada"}})
        assert pending.state is RequestState.PENDING

    def test_cancel_only_once(self, coordinator, session):
        pending = coordinator.open_request(session, "Name?", NAME_SCHEMA)
        assert coordinator.cancel(session, pending.request_id, reason="first")
        assert not coordinator.cancel(session, pending.request_id, reason="second")
        assert pending.outcome.reason == "first"


class TestCancellation:
    """Requests that never get an answer."""

    @pytest.mark.asyncio
    async def test_deadline(self, session, client_side):
        coordinator = ElicitationCoordinator(timeout_seconds=0.05)
        outcome = await coordinator.elicit(session, "Name?", NAME_SCHEMA)

        assert outcome.cancelled
        assert "no reply" in outcome.reason
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_late_reply_after_deadline_is_stale(self, session, client_side):
        coordinator = ElicitationCoordinator(timeout_seconds=0.05)
        outcome = await coordinator.elicit(session, "Name?", NAME_SCHEMA)
        with pytest.raises(StaleCorrelation):
            coordinator.resolve(session, outcome.request_id, {"content": {"name": "Ada"}})

    @pytest.mark.asyncio
    async def test_session_close(self, coordinator, client_side, transports):
        registry = SessionRegistry()
        session = registry.lookup(registry.create_session(transport=transports[0]))
        task = asyncio.create_task(coordinator.elicit(session, "Name?", NAME_SCHEMA))
        await next_frame(client_side)

        registry.close_session(session.id, reason="client went away")

        outcome = await task
        assert outcome.cancelled
        assert outcome.reason == "client went away"

    @pytest.mark.asyncio
    async def test_closed_session_rejects_new_requests(self, coordinator, session):
        session.close()
        with pytest.raises(SessionClosed):
            await coordinator.elicit(session, "Name?", NAME_SCHEMA)

    @pytest.mark.asyncio
    async def test_transport_dropped(self, coordinator, session, client_side):
        await client_side.close()
        await session.transport.close()

        outcome = await coordinator.elicit(session, "Name?", NAME_SCHEMA)
        assert outcome.cancelled
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_no_transport(self, coordinator):
        session = Session("s", CapabilityRegistry())
        outcome = await coordinator.elicit(session, "Name?", NAME_SCHEMA)
        assert outcome.cancelled

    @pytest.mark.asyncio
    async def test_cancelled_invocation_cancels_request(self, coordinator, session, client_side):
        task = asyncio.create_task(coordinator.elicit(session, "Name?", NAME_SCHEMA))
        frame = await next_frame(client_side)
        pending = session.find_pending(frame["id"])

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert pending.state is RequestState.CANCELLED
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_closing_one_session_leaves_others_pending(self, coordinator):
        registry = SessionRegistry()
        a_server, a_client = MemoryTransport.create_pair()
        b_server, b_client = MemoryTransport.create_pair()
        a = registry.lookup(registry.create_session(transport=a_server))
        b = registry.lookup(registry.create_session(transport=b_server))

        task_a = asyncio.create_task(coordinator.elicit(a, "Name?", NAME_SCHEMA))
        task_b = asyncio.create_task(coordinator.elicit(b, "Name?", NAME_SCHEMA))
        await next_frame(a_client)
        frame_b = await next_frame(b_client)

        registry.close_session(a.id)
        assert (await task_a).cancelled
        assert not task_b.done()

        coordinator.resolve(b, frame_b["id"], {"content": {"name": "Grace"}})
        assert (await task_b).get("name") == "Grace"


class TestWaitBlocking:
    """Thread-per-session handlers waiting on the same requests."""

    def test_resumes_from_another_thread(self, coordinator):
        session = Session("s", CapabilityRegistry())
        pending = coordinator.open_request(session, "Name?", NAME_SCHEMA)

        with ThreadPoolExecutor(max_workers=1) as pool:
            waiting = pool.submit(coordinator.wait_blocking, session, pending, 5)
            coordinator.resolve(session, pending.request_id, {"content": {"name": "Ada"}})
            outcome = waiting.result(timeout=5)

        assert outcome.answered
        assert outcome.get("name") == "Ada"

    def test_deadline(self, coordinator):
        session = Session("s", CapabilityRegistry())
        pending = coordinator.open_request(session, "Name?", NAME_SCHEMA)
        outcome = coordinator.wait_blocking(session, pending, 0.01)
        assert outcome.cancelled
        assert session.pending == {}


class TestInvocationContext:
    """Sequencing of elicitations within one invocation."""

    @pytest.mark.asyncio
    async def test_concurrent_elicitation_is_rejected(self, coordinator, session, client_side):
        ctx = InvocationContext(session, coordinator)
        first = asyncio.create_task(ctx.elicit("First?", NAME_SCHEMA))
        frame = await next_frame(client_side)
        assert ctx.in_flight.request_id == frame["id"]

        with pytest.raises(ConcurrentElicitation):
            await ctx.elicit("Second?", NAME_SCHEMA)
        assert len(session.pending) == 1

        coordinator.resolve(session, frame["id"], {"content": {"name": "Ada"}})
        await first
        assert ctx.in_flight is None

    @pytest.mark.asyncio
    async def test_sequential_elicitations(self, coordinator, session, client_side):
        async def answer_twice():
            for name in ("Ada", "Grace"):
                frame = await next_frame(client_side)
                coordinator.resolve(session, frame["id"], {"content": {"name": name}})

        ctx = InvocationContext(session, coordinator)
        answering = asyncio.create_task(answer_twice())
        first = await ctx.elicit("First?", NAME_SCHEMA)
        second = await ctx.elicit("Second?", NAME_SCHEMA)
        await answering

        assert [first.request_id, second.request_id] == [1, 2]
        assert [o.get("name") for o in ctx.outcomes] == ["Ada", "Grace"]
        assert ctx.describe()["elicitations"] == 2
