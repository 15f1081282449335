"""NETCONF session over a connected byte stream.

A Session owns:
- the hello exchange and the framing mode chosen from it
- message-id allocation and the table of calls waiting for a reply
- a single router task reading the stream and dispatching what it reads
- a bounded queue of notifications

Lifecycle: HANDSHAKING -> OPEN -> CLOSED. CLOSED is terminal. When the
session closes, for whatever reason, every waiting call fails with
SessionClosedError and notification iterators end.

Usage:
    stream = await open_tcp_stream("router1", 830)
    async with await Session.open(stream) as session:
        reply = await session.call(GetConfigRequest())
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .capabilities import BASE_1_0, BASE_1_1, DEFAULT_CAPABILITIES, CapabilitySet, expand_capability
from .errors import (
    CallTimeoutError,
    FramingError,
    HandshakeError,
    NetconfError,
    RPCError,
    SessionClosedError,
    TransportError,
    ValidationError,
)
from .protocol.codec import build_rpc, decode_hello, decode_message, encode_hello, parse_xml, to_xml_bytes
from .protocol.messages import Hello, Notification, RPCReply
from .protocol.operations import CloseSessionRequest, CreateSubscriptionRequest, Request, encode_operation
from .transport.base import ByteStream
from .transport.framing import Framer, FramingMode

logger = logging.getLogger(__name__)

# Sentinel for "use config.call_timeout".
CONFIG_TIMEOUT: Any = object()


class SessionState(str, Enum):
    """Session lifecycle."""

    HANDSHAKING = "handshaking"
    OPEN = "open"
    CLOSED = "closed"


class NotificationOverflow(str, Enum):
    """What the router does when the notification queue is full."""

    DROP_OLDEST = "drop-oldest"  # evict the oldest queued notification
    BLOCK = "block"  # wait up to notification_put_timeout, then drop the new one


@dataclass
class SessionConfig:
    """Settings for one NETCONF session."""

    # Hello
    capabilities: list[str] = field(default_factory=lambda: list(DEFAULT_CAPABILITIES))
    handshake_timeout: float | None = 30.0

    # Calls
    call_timeout: float | None = None  # None waits until reply or close
    warnings_as_errors: bool = True
    enforce_capabilities: bool = False

    # Close
    close_timeout: float = 5.0
    send_close_session: bool = True

    # Framing
    chunk_size: int = 65536
    read_size: int = 65536

    # Notifications
    notification_queue_size: int = 1024
    notification_overflow: NotificationOverflow = NotificationOverflow.DROP_OLDEST
    notification_put_timeout: float = 1.0


class Session:
    """One NETCONF session: correlates calls with replies and routes notifications.

    Create it with Session.open(), which runs the hello exchange. Calls may be
    issued concurrently from any number of tasks on the session's event loop.
    """

    def __init__(self, stream: ByteStream, config: SessionConfig | None = None) -> None:
        self.config = config or SessionConfig()
        self._stream = stream
        self._framer = Framer(
            stream,
            chunk_size=self.config.chunk_size,
            read_size=self.config.read_size,
        )
        self._state = SessionState.HANDSHAKING
        self._session_id: int | None = None
        self._capabilities = CapabilitySet()
        self._local_capabilities = [expand_capability(c) for c in self.config.capabilities]

        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[RPCReply]] = {}
        self._write_lock = asyncio.Lock()
        self._router_task: asyncio.Task[None] | None = None
        self._close_cause: BaseException | None = None
        self._closing = False

        self._notifications: asyncio.Queue[Notification | None] = asyncio.Queue(
            maxsize=self.config.notification_queue_size
        )
        self._notification_stream = "NETCONF"
        self._subscriptions: dict[int, str] = {}
        self._notifications_ended = False
        self.dropped_notifications = 0

    @classmethod
    async def open(cls, stream: ByteStream, config: SessionConfig | None = None) -> Session:
        """Run the hello exchange on a connected stream and start the router.

        Raises:
            HandshakeError: The peer did not complete a usable hello in time.
                The stream has been closed.
        """
        session = cls(stream, config)
        await session._handshake()
        return session

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == SessionState.OPEN

    @property
    def session_id(self) -> int | None:
        """Session-id assigned by the peer."""
        return self._session_id

    @property
    def capabilities(self) -> CapabilitySet:
        """Capabilities advertised by the peer."""
        return self._capabilities

    @property
    def framing_mode(self) -> FramingMode:
        return self._framer.mode

    @property
    def pending_calls(self) -> int:
        return len(self._pending)

    @property
    def close_cause(self) -> BaseException | None:
        """The fatal error that closed the session, if any."""
        return self._close_cause

    @property
    def notification_stream(self) -> str:
        """Stream name attached to received notifications."""
        return self._notification_stream

    # -------------------------------------------------------------------------
    # Handshake
    # -------------------------------------------------------------------------

    async def _handshake(self) -> None:
        try:
            await self._framer.write_message(encode_hello(self._local_capabilities))
            raw = await asyncio.wait_for(self._framer.read_message(), timeout=self.config.handshake_timeout)
            if raw is None:
                raise HandshakeError("stream closed before the peer sent <hello>")
            hello = decode_hello(parse_xml(raw))
            mode = self._negotiate(hello)
            self._framer.select_mode(mode)
        except HandshakeError:
            await self._abort_handshake()
            raise
        except TimeoutError as e:
            await self._abort_handshake()
            raise HandshakeError(f"no <hello> within {self.config.handshake_timeout}s") from e
        except (TransportError, OSError) as e:
            await self._abort_handshake()
            raise HandshakeError(f"hello exchange failed: {e}") from e
        except asyncio.CancelledError:
            await self._abort_handshake()
            raise

        self._session_id = hello.session_id
        self._capabilities = CapabilitySet(hello.capabilities)
        self._state = SessionState.OPEN
        self._router_task = asyncio.create_task(self._route_loop(), name=f"netconf-router-{self._session_id}")
        logger.info(
            f"NETCONF session {self._session_id} established "
            f"({mode.value} framing, {len(self._capabilities)} peer capabilities)"
        )

    def _negotiate(self, hello: Hello) -> FramingMode:
        if hello.session_id is None:
            raise HandshakeError("peer <hello> has no session-id")
        peer = CapabilitySet(hello.capabilities)
        local = CapabilitySet(self._local_capabilities)
        if BASE_1_1 in peer and BASE_1_1 in local:
            return FramingMode.CHUNKED
        if BASE_1_0 in peer and BASE_1_0 in local:
            return FramingMode.END_OF_MESSAGE
        raise HandshakeError("no common NETCONF base version with the peer")

    async def _abort_handshake(self) -> None:
        self._state = SessionState.CLOSED
        with contextlib.suppress(OSError):
            await self._stream.close()

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def call(
        self,
        request: Request | ET.Element | str | bytes,
        timeout: float | None = CONFIG_TIMEOUT,
    ) -> RPCReply:
        """Send one <rpc> and wait for its <rpc-reply>.

        Args:
            request: A typed request, an operation element, or raw XML text
            timeout: Seconds to wait for the reply. Defaults to
                config.call_timeout; None waits until reply or close.

        Raises:
            ValidationError: The request was rejected locally. Nothing was sent.
            SessionClosedError: The session is closed or closed while waiting.
            CallTimeoutError: No reply in time. The reply, if it ever comes,
                is discarded.
            RPCError: The reply carried <rpc-error> records.
        """
        if self._state != SessionState.OPEN:
            raise SessionClosedError(self._closed_message(), cause=self._close_cause)

        operation = encode_operation(request) if isinstance(request, Request) else request
        rpc = build_rpc(operation)

        message_id = next(self._ids)
        rpc.set("message-id", str(message_id))
        try:
            frame = self._framer.encode(to_xml_bytes(rpc))
        except FramingError as e:
            raise ValidationError(str(e)) from e

        future: asyncio.Future[RPCReply] = asyncio.get_running_loop().create_future()
        self._pending[message_id] = future
        if isinstance(request, CreateSubscriptionRequest):
            self._subscriptions[message_id] = request.stream
        try:
            await self._write(message_id, frame)
            wait = self.config.call_timeout if timeout is CONFIG_TIMEOUT else timeout
            try:
                reply = await asyncio.wait_for(future, timeout=wait)
            except TimeoutError:
                logger.warning(f"No reply to message-id {message_id} within {wait}s")
                raise CallTimeoutError(message_id, wait) from None
        finally:
            self._pending.pop(message_id, None)
            self._subscriptions.pop(message_id, None)

        return self._check_reply(message_id, reply)

    async def _write(self, message_id: int, frame: bytes) -> None:
        async with self._write_lock:
            if self._state != SessionState.OPEN:
                raise SessionClosedError(self._closed_message(), cause=self._close_cause)
            try:
                await self._framer.write_frame(frame)
            except (OSError, TransportError) as e:
                logger.error(f"Write failed on NETCONF session {self._session_id}: {e}")
                cause = e if isinstance(e, TransportError) else TransportError(f"write failed: {e}")
                self._pending.pop(message_id, None)
                await self._shutdown(cause)
                raise SessionClosedError(self._closed_message(), cause=cause) from e
        logger.debug(f"Sent rpc message-id={message_id} ({len(frame)} bytes)")

    def _check_reply(self, message_id: int, reply: RPCReply) -> RPCReply:
        if not reply.errors:
            return reply
        fatal = reply.error_records(include_warnings=self.config.warnings_as_errors)
        if fatal:
            raise RPCError(reply.errors, message_id)
        for warning in reply.errors:
            logger.warning(f"rpc-reply {message_id}: {warning}")
        return reply

    def _closed_message(self) -> str:
        if self._close_cause is None:
            return "session closed"
        return f"session closed: {self._close_cause}"

    # -------------------------------------------------------------------------
    # Router
    # -------------------------------------------------------------------------

    async def _route_loop(self) -> None:
        """Read messages until EOF or a fatal error, then close the session."""
        cause: BaseException | None = None
        try:
            while True:
                raw = await self._framer.read_message()
                if raw is None:
                    logger.info(f"NETCONF session {self._session_id}: peer closed the stream")
                    break
                await self._dispatch(decode_message(raw))
        except (TransportError, OSError) as e:
            logger.error(f"NETCONF session {self._session_id} failed: {e}")
            cause = e
        except Exception as e:
            logger.exception(f"Router error on NETCONF session {self._session_id}")
            cause = e
        await self._shutdown(cause)

    async def _dispatch(self, message: RPCReply | Notification | Hello) -> None:
        if isinstance(message, RPCReply):
            if message.message_id is None:
                logger.warning("Dropping rpc-reply without a usable message-id")
                return
            self._record_subscription(message)
            future = self._pending.pop(message.message_id, None)
            if future is None or future.done():
                logger.debug(f"Dropping reply for unknown or abandoned message-id {message.message_id}")
                return
            logger.debug(f"Received rpc-reply message-id={message.message_id}")
            future.set_result(message)
        elif isinstance(message, Notification):
            message.stream = self._notification_stream
            await self._deliver_notification(message)
        else:
            logger.warning("Ignoring <hello> received after session establishment")

    def _record_subscription(self, reply: RPCReply) -> None:
        # Routed before any notification that follows the reply on the wire.
        stream = self._subscriptions.pop(reply.message_id, None)
        if stream is None:
            return
        if reply.error_records(include_warnings=self.config.warnings_as_errors):
            logger.warning(f"Subscription to stream {stream} rejected by the peer")
            return
        self._notification_stream = stream

    async def _deliver_notification(self, notification: Notification) -> None:
        queue = self._notifications
        if self.config.notification_overflow == NotificationOverflow.BLOCK:
            try:
                await asyncio.wait_for(queue.put(notification), timeout=self.config.notification_put_timeout)
            except TimeoutError:
                self.dropped_notifications += 1
                logger.warning(
                    f"Notification queue full for {self.config.notification_put_timeout}s, "
                    f"dropped {notification.event_name} ({self.dropped_notifications} dropped)"
                )
            return

        if queue.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                queue.get_nowait()
            self.dropped_notifications += 1
            logger.warning(f"Notification queue full, dropped oldest ({self.dropped_notifications} dropped)")
        queue.put_nowait(notification)

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def notifications(self) -> AsyncIterator[Notification]:
        """Yield received notifications until the session closes.

        Notifications already queued when the session closes are still
        delivered.
        """
        queue = self._notifications
        while not (self._notifications_ended and queue.empty()):
            item = await queue.get()
            if item is None:
                # End marker stays queued for other iterators.
                queue.put_nowait(None)
                return
            yield item

    def _end_notifications(self) -> None:
        self._notifications_ended = True
        # A full queue needs no marker: iterators stop once it is drained.
        if not self._notifications.full():
            self._notifications.put_nowait(None)

    # -------------------------------------------------------------------------
    # Close
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close the session. Safe to call more than once and from several tasks."""
        if self._state == SessionState.CLOSED:
            return
        if self._state == SessionState.OPEN and self.config.send_close_session and not self._closing:
            self._closing = True
            try:
                await self.call(CloseSessionRequest(), timeout=self.config.close_timeout)
            except (NetconfError, OSError) as e:
                logger.warning(f"close-session on NETCONF session {self._session_id} failed: {e}")
        await self._shutdown(None)

    async def _shutdown(self, cause: BaseException | None) -> None:
        if self._state == SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        self._close_cause = cause

        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(SessionClosedError(self._closed_message(), cause=cause))

        router = self._router_task
        if router is not None and router is not asyncio.current_task() and not router.done():
            router.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await router

        with contextlib.suppress(OSError):
            await self._stream.close()
        self._end_notifications()

        if cause is None:
            logger.info(f"NETCONF session {self._session_id} closed")
        else:
            logger.warning(f"NETCONF session {self._session_id} closed: {cause}")

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def open_session(stream: ByteStream, config: SessionConfig | None = None) -> Session:
    """Shorthand for Session.open()."""
    return await Session.open(stream, config)
