"""Integration tests for Session against a scripted NETCONF server.

Tests cover:
- Hello exchange and framing selection
- Message-id allocation and reply routing under concurrency
- Timeouts and cancellation
- Close semantics and fatal stream failures
- Notification delivery and overflow policies
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from netconf_async.errors import (
    CallTimeoutError,
    DecodeError,
    FramingError,
    HandshakeError,
    RPCError,
    SessionClosedError,
    TransportError,
    ValidationError,
)
from netconf_async.protocol.codec import BASE_NS
from netconf_async.protocol.operations import (
    CreateSubscriptionRequest,
    GetRequest,
    LockRequest,
    SubscriptionOptions,
)
from netconf_async.session import NotificationOverflow, Session, SessionConfig, SessionState
from netconf_async.transport import FramingMode

BASE_1_0 = "urn:ietf:params:netconf:base:1.0"


# =============================================================================
# Handshake
# =============================================================================


class TestHandshake:
    """Tests for the hello exchange."""

    @pytest.mark.asyncio
    async def test_chunked_when_both_support_base_1_1(self, connect) -> None:
        """Both sides advertise base:1.1, so chunked framing is used."""
        server, session = await connect()

        assert session.state == SessionState.OPEN
        assert session.framing_mode == FramingMode.CHUNKED
        assert session.session_id == 42
        assert ":candidate" in session.capabilities

    @pytest.mark.asyncio
    async def test_end_of_message_with_base_1_0_peer(self, connect) -> None:
        """A base:1.0-only peer keeps end-of-message framing."""
        server, session = await connect(capabilities=(BASE_1_0,))

        assert session.framing_mode == FramingMode.END_OF_MESSAGE
        reply = await session.call(GetRequest())
        assert reply.ok

    @pytest.mark.asyncio
    async def test_local_base_1_0_only(self, connect) -> None:
        """Our own capability list decides as much as the peer's."""
        server, session = await connect(SessionConfig(capabilities=[":base:1.0"]))

        assert session.framing_mode == FramingMode.END_OF_MESSAGE
        assert (await session.call(GetRequest())).ok

    @pytest.mark.asyncio
    async def test_client_hello_sent(self, connect) -> None:
        server, session = await connect()

        assert server.client_hello is not None
        caps = [c.text for c in server.client_hello.iter(f"{{{BASE_NS}}}capability")]
        assert caps == [BASE_1_0, "urn:ietf:params:netconf:base:1.1"]

    @pytest.mark.asyncio
    async def test_no_common_base(self, server_factory) -> None:
        server = server_factory(capabilities=("urn:ietf:params:netconf:base:2.0",))
        server.start()

        with pytest.raises(HandshakeError, match="base"):
            await Session.open(server.client_stream)
        assert server.client_stream.closed

    @pytest.mark.asyncio
    async def test_missing_session_id(self, server_factory) -> None:
        server = server_factory(session_id=None)
        server.start()

        with pytest.raises(HandshakeError, match="session-id"):
            await Session.open(server.client_stream)

    @pytest.mark.asyncio
    async def test_malformed_hello(self, server_factory) -> None:
        server = server_factory(hello="<hello><capabilities>")
        server.start()

        with pytest.raises(HandshakeError) as exc_info:
            await Session.open(server.client_stream)
        assert isinstance(exc_info.value.__cause__, DecodeError)

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, server_factory) -> None:
        """A silent peer fails the handshake after handshake_timeout."""
        server = server_factory()  # never started

        with pytest.raises(HandshakeError, match="no <hello>"):
            await Session.open(server.client_stream, SessionConfig(handshake_timeout=0.05))
        assert server.client_stream.closed

    @pytest.mark.asyncio
    async def test_peer_closes_before_hello(self, server_factory) -> None:
        server = server_factory()
        await server.stream.close()

        with pytest.raises(HandshakeError):
            await Session.open(server.client_stream)


# =============================================================================
# Calls
# =============================================================================


class TestMessageIds:
    """Tests for message-id allocation."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_get_distinct_increasing_ids(self, connect) -> None:
        server, session = await connect()

        replies = await asyncio.gather(*(session.call(GetRequest()) for _ in range(20)))

        assert sorted(r.message_id for r in replies) == list(range(1, 21))
        wire_ids = [int(rpc.get("message-id")) for rpc in server.rpcs]
        assert wire_ids == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_local_error_does_not_consume_id(self, connect) -> None:
        """A request rejected locally is never written."""
        server, session = await connect()

        with pytest.raises(ValidationError):
            await session.call("<get><filter></get>")

        reply = await session.call(GetRequest())
        assert reply.message_id == 1
        assert len(server.rpcs) == 1


class TestRouting:
    """Tests for reply routing."""

    @pytest.mark.asyncio
    async def test_out_of_order_replies(self, connect) -> None:
        """Each reply reaches the caller that sent the matching message-id."""
        server, session = await connect()
        held: list[str] = []
        server.on("get", lambda rpc, message_id: held.append(message_id))

        first = asyncio.create_task(session.call(GetRequest(filter="/a")))
        second = asyncio.create_task(session.call(GetRequest(filter="/b")))
        await server.next_rpc()
        await server.next_rpc()

        await server.send(server.data(held[1], "<b/>"))
        await server.send(server.data(held[0], "<a/>"))

        reply_a, reply_b = await asyncio.gather(first, second)
        assert reply_a.message_id == int(held[0])
        assert reply_a.data == "<a />"
        assert reply_b.data == "<b />"

    @pytest.mark.asyncio
    async def test_interleaved_notifications_and_replies(self, connect) -> None:
        """Notifications between out-of-order replies keep their order; each caller gets its own reply."""
        server, session = await connect()
        await session.call(CreateSubscriptionRequest(SubscriptionOptions(stream="events")))
        await server.next_rpc()  # create-subscription
        held: list[str] = []
        server.on("get", lambda rpc, message_id: held.append(message_id))

        first = asyncio.create_task(session.call(GetRequest(filter="/a")))
        second = asyncio.create_task(session.call(GetRequest(filter="/b")))
        await server.next_rpc()
        await server.next_rpc()

        await server.send(server.notification("n1"))
        await server.send(server.data(held[1], "<b/>"))
        await server.send(server.notification("n2"))
        await server.send(server.data(held[0], "<a/>"))

        reply_a, reply_b = await asyncio.gather(first, second)
        assert (reply_a.message_id, reply_a.data) == (int(held[0]), "<a />")
        assert (reply_b.message_id, reply_b.data) == (int(held[1]), "<b />")

        notifications = session.notifications()
        received = [await asyncio.wait_for(anext(notifications), 1.0) for _ in range(2)]
        assert [n.event_name for n in received] == ["n1", "n2"]
        assert {n.stream for n in received} == {"events"}

    @pytest.mark.asyncio
    async def test_unknown_and_missing_ids_dropped(self, connect) -> None:
        """Replies nobody waits for are discarded; the session carries on."""
        server, session = await connect()

        await server.send(server.ok("999"))
        await server.send(f'<rpc-reply xmlns="{BASE_NS}"><ok/></rpc-reply>')

        reply = await session.call(GetRequest())
        assert reply.ok
        assert session.is_open

    @pytest.mark.asyncio
    async def test_rpc_error(self, connect) -> None:
        """A reply with rpc-error fails only that call."""
        server, session = await connect()
        server.on("lock", lambda rpc, message_id: server.error(message_id, "lock-denied", message="Lock failed"))

        with pytest.raises(RPCError) as exc_info:
            await session.call(LockRequest())

        assert exc_info.value.tag == "lock-denied"
        assert exc_info.value.error_message == "Lock failed"
        assert exc_info.value.message_id == 1
        assert session.is_open

    @pytest.mark.asyncio
    async def test_warnings_raise_by_default(self, connect) -> None:
        server, session = await connect()
        server.on("get", lambda rpc, message_id: server.error(message_id, "partial", severity="warning"))

        with pytest.raises(RPCError):
            await session.call(GetRequest())

    @pytest.mark.asyncio
    async def test_warnings_allowed(self, connect) -> None:
        """With warnings_as_errors off, warning-only replies succeed."""
        server, session = await connect(SessionConfig(warnings_as_errors=False))
        server.on("get", lambda rpc, message_id: server.error(message_id, "partial", severity="warning"))

        reply = await session.call(GetRequest())
        assert [e.tag for e in reply.errors] == ["partial"]


class TestTimeoutAndCancellation:
    """Tests for abandoned calls."""

    @pytest.mark.asyncio
    async def test_timeout(self, connect) -> None:
        server, session = await connect()
        server.hold("get")

        with pytest.raises(CallTimeoutError) as exc_info:
            await session.call(GetRequest(), timeout=0.05)

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.message_id == 1
        assert session.pending_calls == 0
        assert session.is_open

    @pytest.mark.asyncio
    async def test_config_call_timeout(self, connect) -> None:
        server, session = await connect(SessionConfig(call_timeout=0.05))
        server.hold("get")

        with pytest.raises(CallTimeoutError):
            await session.call(GetRequest())

    @pytest.mark.asyncio
    async def test_late_reply_after_timeout_is_dropped(self, connect) -> None:
        server, session = await connect()
        server.hold("get")

        with pytest.raises(CallTimeoutError):
            await session.call(GetRequest(), timeout=0.05)
        await server.send(server.data("1", "<late/>"))

        server.on("get", lambda rpc, message_id: server.data(message_id, "<fresh/>"))
        reply = await session.call(GetRequest())
        assert reply.message_id == 2
        assert reply.data == "<fresh />"

    @pytest.mark.asyncio
    async def test_cancellation(self, connect) -> None:
        """A cancelled caller's late reply is dropped and the session continues."""
        server, session = await connect()
        server.hold("get")

        task = asyncio.create_task(session.call(GetRequest()))
        rpc = await server.next_rpc()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.pending_calls == 0

        await server.send(server.data(rpc.get("message-id"), "<late/>"))
        server.on("get", lambda rpc, message_id: server.data(message_id, "<fresh/>"))

        reply = await session.call(GetRequest())
        assert reply.message_id == 2
        assert reply.data == "<fresh />"

    @pytest.mark.asyncio
    async def test_late_reply_for_cancelled_call_spares_other_calls(self, connect) -> None:
        """A reply for a cancelled id is dropped while another call keeps waiting."""
        server, session = await connect()
        held: list[str] = []
        server.on("get", lambda rpc, message_id: held.append(message_id))

        cancelled = asyncio.create_task(session.call(GetRequest(filter="/a")))
        waiting = asyncio.create_task(session.call(GetRequest(filter="/b")))
        await server.next_rpc()
        await server.next_rpc()
        cancelled.cancel()
        with pytest.raises(asyncio.CancelledError):
            await cancelled
        assert session.pending_calls == 1

        await server.send(server.data(held[0], "<late/>"))
        assert not waiting.done()
        await server.send(server.data(held[1], "<b/>"))

        reply = await asyncio.wait_for(waiting, 1.0)
        assert (reply.message_id, reply.data) == (int(held[1]), "<b />")
        assert session.pending_calls == 0
        assert session.is_open


# =============================================================================
# Close and failures
# =============================================================================


class TestClose:
    """Tests for close semantics."""

    @pytest.mark.asyncio
    async def test_close_fails_pending_calls(self, connect) -> None:
        server, session = await connect()
        server.hold("get")

        task = asyncio.create_task(session.call(GetRequest()))
        await server.next_rpc()
        await session.close()

        with pytest.raises(SessionClosedError):
            await task
        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_sends_close_session(self, connect) -> None:
        server, session = await connect()

        await session.close()

        assert [server.operation(rpc).tag for rpc in server.rpcs] == [f"{{{BASE_NS}}}close-session"]

    @pytest.mark.asyncio
    async def test_close_without_close_session(self, connect) -> None:
        server, session = await connect(SessionConfig(send_close_session=False))

        await session.close()

        assert server.rpcs == []
        assert server.client_stream.closed

    @pytest.mark.asyncio
    async def test_calls_after_close_fail_without_writing(self, connect) -> None:
        server, session = await connect()
        await session.close()
        sent = len(server.rpcs)

        with pytest.raises(SessionClosedError):
            await session.call(GetRequest())
        assert len(server.rpcs) == sent

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, connect) -> None:
        server, session = await connect()

        await asyncio.gather(session.close(), session.close())
        await session.close()

        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_session_timeout(self, connect) -> None:
        """An unanswered close-session does not block close() forever."""
        server, session = await connect(SessionConfig(close_timeout=0.05))
        server.hold("close-session")

        await session.close()

        assert session.state == SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_context_manager(self, connect) -> None:
        server, session = await connect()

        async with session:
            assert (await session.call(GetRequest())).ok

        assert session.state == SessionState.CLOSED


class TestStreamFailures:
    """Tests for fatal stream conditions."""

    @pytest.mark.asyncio
    async def test_eof_fails_pending_calls(self, connect) -> None:
        server, session = await connect()
        server.hold("get")

        task = asyncio.create_task(session.call(GetRequest()))
        await server.next_rpc()
        await server.stream.close()

        with pytest.raises(SessionClosedError):
            await task
        assert session.state == SessionState.CLOSED
        assert session.close_cause is None

    @pytest.mark.asyncio
    async def test_framing_error_is_fatal(self, connect) -> None:
        server, session = await connect()
        server.hold("get")

        task = asyncio.create_task(session.call(GetRequest()))
        await server.next_rpc()
        await server.stream.write(b"garbage")

        with pytest.raises(SessionClosedError) as exc_info:
            await task
        assert isinstance(exc_info.value.cause, FramingError)
        assert isinstance(session.close_cause, FramingError)

    @pytest.mark.asyncio
    async def test_malformed_message_is_fatal(self, connect) -> None:
        server, session = await connect()

        await server.send("<rpc-reply><ok></rpc-reply>")

        with pytest.raises(SessionClosedError):
            await session.call(GetRequest())
        assert isinstance(session.close_cause, DecodeError)

    @pytest.mark.asyncio
    async def test_write_failure_is_fatal(self, connect) -> None:
        server, session = await connect()
        server.client_stream.write = AsyncMock(side_effect=ConnectionResetError("reset by peer"))

        with pytest.raises(SessionClosedError) as exc_info:
            await session.call(GetRequest())

        assert isinstance(exc_info.value.cause, TransportError)
        assert session.state == SessionState.CLOSED
        assert session.pending_calls == 0


# =============================================================================
# Notifications
# =============================================================================


class TestNotifications:
    """Tests for notification routing."""

    @pytest.mark.asyncio
    async def test_delivered_with_subscribed_stream(self, connect) -> None:
        server, session = await connect()
        await session.call(CreateSubscriptionRequest(SubscriptionOptions(stream="syslog")))

        await server.send(server.notification("link-down"))
        await server.send(server.notification("link-up"))

        notifications = session.notifications()
        first = await asyncio.wait_for(anext(notifications), 1.0)
        second = await asyncio.wait_for(anext(notifications), 1.0)
        assert (first.event_name, second.event_name) == ("link-down", "link-up")
        assert first.stream == "syslog"

    @pytest.mark.asyncio
    async def test_iterator_ends_on_close(self, connect) -> None:
        server, session = await connect()
        async def consume() -> list[str]:
            return [n.event_name async for n in session.notifications()]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await session.close()

        assert await asyncio.wait_for(consumer, 1.0) == []

    @pytest.mark.asyncio
    async def test_queued_notifications_survive_close(self, connect) -> None:
        server, session = await connect()
        await server.send(server.notification("ev1"))
        await session.call(GetRequest())  # reply follows the notification on the wire

        await session.close()

        received = [n.event_name async for n in session.notifications()]
        assert received == ["ev1"]

    @pytest.mark.asyncio
    async def test_full_queue_fully_delivered_after_close(self, connect) -> None:
        """Closing with a full queue loses nothing; iteration ends once drained."""
        server, session = await connect(SessionConfig(notification_queue_size=2))
        await server.send(server.notification("ev1"))
        await server.send(server.notification("ev2"))
        await session.call(GetRequest())

        await session.close()

        received = [n.event_name async for n in session.notifications()]
        assert received == ["ev1", "ev2"]
        assert session.dropped_notifications == 0
        assert [n async for n in session.notifications()] == []

    @pytest.mark.asyncio
    async def test_rejected_subscription_keeps_stream(self, connect) -> None:
        server, session = await connect()
        server.on("create-subscription", lambda rpc, message_id: server.error(message_id, "invalid-value"))

        with pytest.raises(RPCError):
            await session.call(CreateSubscriptionRequest(SubscriptionOptions(stream="bogus")))
        await server.send(server.notification("ev1"))

        notification = await asyncio.wait_for(anext(session.notifications()), 1.0)
        assert notification.stream == "NETCONF"
        assert session.notification_stream == "NETCONF"

    @pytest.mark.asyncio
    async def test_notification_right_after_subscription_reply(self, connect) -> None:
        """A notification sent together with the reply already carries the new stream."""
        server, session = await connect()
        server.push_after("create-subscription", server.notification("ev1"))

        await session.call(CreateSubscriptionRequest(SubscriptionOptions(stream="alarms")))

        notification = await asyncio.wait_for(anext(session.notifications()), 1.0)
        assert notification.stream == "alarms"

    @pytest.mark.asyncio
    async def test_drop_oldest(self, connect) -> None:
        """A full queue evicts the oldest notification and counts it."""
        server, session = await connect(SessionConfig(notification_queue_size=2))

        for name in ("ev1", "ev2", "ev3", "ev4"):
            await server.send(server.notification(name))
        await session.call(GetRequest())

        assert session.dropped_notifications == 2
        notifications = session.notifications()
        assert (await anext(notifications)).event_name == "ev3"
        assert (await anext(notifications)).event_name == "ev4"

    @pytest.mark.asyncio
    async def test_block_drops_newest_after_timeout(self, connect) -> None:
        config = SessionConfig(
            notification_queue_size=1,
            notification_overflow=NotificationOverflow.BLOCK,
            notification_put_timeout=0.05,
        )
        server, session = await connect(config)

        await server.send(server.notification("ev1"))
        await server.send(server.notification("ev2"))
        await session.call(GetRequest())

        assert session.dropped_notifications == 1
        assert (await anext(session.notifications())).event_name == "ev1"

    @pytest.mark.asyncio
    async def test_block_waits_for_consumer(self, connect) -> None:
        """Under BLOCK, a draining consumer loses nothing."""
        config = SessionConfig(
            notification_queue_size=1,
            notification_overflow=NotificationOverflow.BLOCK,
            notification_put_timeout=1.0,
        )
        server, session = await connect(config)

        async def consume(count: int) -> list[str]:
            names = []
            async for notification in session.notifications():
                names.append(notification.event_name)
                if len(names) == count:
                    break
            return names

        consumer = asyncio.create_task(consume(3))
        for name in ("ev1", "ev2", "ev3"):
            await server.send(server.notification(name))

        assert await asyncio.wait_for(consumer, 1.0) == ["ev1", "ev2", "ev3"]
        assert session.dropped_notifications == 0
