"""Fixtures for session, client and CLI integration tests.

FakeNetconfServer plays the device side of a session over an in-memory
stream pair. It sends a hello, reads the client's hello, switches to chunked
framing when both sides advertise base:1.1, then answers every <rpc> with
<ok/> unless a responder was registered for the operation.
"""

from __future__ import annotations

import asyncio
import contextlib
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from netconf_async.capabilities import BASE_1_0, BASE_1_1, CANDIDATE, CONFIRMED_COMMIT, NOTIFICATION, VALIDATE
from netconf_async.client import NetconfClient
from netconf_async.errors import NetconfError
from netconf_async.protocol.codec import BASE_NS, NOTIFICATION_NS, local_name
from netconf_async.session import Session, SessionConfig
from netconf_async.transport import Framer, FramingMode, MemoryByteStream, create_stream_pair

SERVER_CAPABILITIES = (BASE_1_0, BASE_1_1, CANDIDATE, CONFIRMED_COMMIT, VALIDATE, NOTIFICATION)

# responder(rpc, message_id) -> reply XML, or None to send nothing
Responder = Callable[[ET.Element, str], "str | None"]


class FakeNetconfServer:
    """Scripted NETCONF device."""

    def __init__(
        self,
        stream: MemoryByteStream,
        *,
        capabilities: tuple[str, ...] = SERVER_CAPABILITIES,
        session_id: int | None = 42,
        hello: str | None = None,
        client_stream: MemoryByteStream | None = None,
    ) -> None:
        self.stream = stream
        self.client_stream = client_stream
        self.framer = Framer(stream)
        self.capabilities = capabilities
        self.session_id = session_id
        self.hello = hello
        self.client_hello: ET.Element | None = None
        self.rpcs: list[ET.Element] = []
        self.frames: list[bytes] = []
        self._incoming: asyncio.Queue[ET.Element] = asyncio.Queue()
        self._responders: dict[str, Responder] = {}
        self._followups: dict[str, list[str]] = {}
        self._task: asyncio.Task[None] | None = None
        self.ready = asyncio.Event()

    # Reply builders

    @staticmethod
    def ok(message_id: str) -> str:
        return f'<rpc-reply xmlns="{BASE_NS}" message-id="{message_id}"><ok/></rpc-reply>'

    @staticmethod
    def data(message_id: str, content: str) -> str:
        return f'<rpc-reply xmlns="{BASE_NS}" message-id="{message_id}"><data>{content}</data></rpc-reply>'

    @staticmethod
    def error(message_id: str, tag: str, severity: str = "error", message: str | None = None) -> str:
        text = f"<error-message>{message}</error-message>" if message else ""
        return (
            f'<rpc-reply xmlns="{BASE_NS}" message-id="{message_id}"><rpc-error>'
            f"<error-type>application</error-type><error-tag>{tag}</error-tag>"
            f"<error-severity>{severity}</error-severity>{text}"
            "</rpc-error></rpc-reply>"
        )

    @staticmethod
    def notification(event: str, event_time: str = "2024-01-01T00:00:00Z") -> str:
        return (
            f'<notification xmlns="{NOTIFICATION_NS}"><eventTime>{event_time}</eventTime>'
            f'<{event} xmlns="urn:example:events"/></notification>'
        )

    # Scripting

    def on(self, operation: str, responder: Responder) -> None:
        self._responders[operation] = responder

    def push_after(self, operation: str, *messages: str) -> None:
        """Send messages right after replying to operation."""
        self._followups.setdefault(operation, []).extend(messages)

    def hold(self, operation: str) -> None:
        """Never answer this operation."""
        self.on(operation, lambda rpc, message_id: None)

    async def send(self, xml: str) -> None:
        await self.framer.write_message(xml.encode())

    async def next_rpc(self, timeout: float = 1.0) -> ET.Element:
        return await asyncio.wait_for(self._incoming.get(), timeout)

    @staticmethod
    def operation(rpc: ET.Element) -> ET.Element:
        return rpc[0]

    # Lifecycle

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, OSError, NetconfError):
                await self._task
        await self.stream.close()

    def _hello_xml(self) -> str:
        if self.hello is not None:
            return self.hello
        caps = "".join(f"<capability>{c}</capability>" for c in self.capabilities)
        session = f"<session-id>{self.session_id}</session-id>" if self.session_id is not None else ""
        return f'<hello xmlns="{BASE_NS}"><capabilities>{caps}</capabilities>{session}</hello>'

    async def _run(self) -> None:
        await self.send(self._hello_xml())
        raw = await self.framer.read_message()
        if raw is None:
            return
        self.client_hello = ET.fromstring(raw)
        client_caps = {c.text for c in self.client_hello.iter(f"{{{BASE_NS}}}capability")}
        if BASE_1_1 in client_caps and BASE_1_1 in self.capabilities:
            self.framer.select_mode(FramingMode.CHUNKED)
        self.ready.set()

        while True:
            raw = await self.framer.read_message()
            if raw is None:
                return
            self.frames.append(raw)
            rpc = ET.fromstring(raw)
            self.rpcs.append(rpc)
            self._incoming.put_nowait(rpc)
            await self._respond(rpc)

    async def _respond(self, rpc: ET.Element) -> None:
        message_id = rpc.get("message-id", "")
        operation = local_name(rpc[0].tag) if len(rpc) else ""
        responder = self._responders.get(operation)
        reply = responder(rpc, message_id) if responder is not None else self.ok(message_id)
        if reply is not None:
            await self.send(reply)
        for message in self._followups.get(operation, []):
            await self.send(message)
        if operation == "close-session" and responder is None:
            await self.stream.close()


@pytest.fixture
async def server_factory() -> AsyncIterator[Callable[..., FakeNetconfServer]]:
    """Create fake servers on fresh stream pairs; stopped at teardown.

    The client end of each pair is server.client_stream.
    """
    servers: list[FakeNetconfServer] = []

    def _factory(**server_options: Any) -> FakeNetconfServer:
        client_stream, server_stream = create_stream_pair()
        server = FakeNetconfServer(server_stream, client_stream=client_stream, **server_options)
        servers.append(server)
        return server

    yield _factory

    for server in servers:
        await server.stop()


@pytest.fixture
async def connect(server_factory: Callable[..., FakeNetconfServer]) -> AsyncIterator[Callable[..., Any]]:
    """Start a fake server and open a session against it.

    Returns (server, session). Keyword arguments other than config go to
    FakeNetconfServer. Sessions are closed at teardown.
    """
    sessions: list[Session] = []

    async def _connect(config: SessionConfig | None = None, **server_options: Any) -> tuple[FakeNetconfServer, Session]:
        server = server_factory(**server_options)
        server.start()
        session = await Session.open(server.client_stream, config)
        await asyncio.wait_for(server.ready.wait(), 1.0)
        sessions.append(session)
        return server, session

    yield _connect

    for session in sessions:
        await session.close()


class CliDevice:
    """Fake servers behind the CLI's connect step.

    Each CLI invocation connects once; the server for it is appended to
    servers with the responders and followups registered here.
    """

    def __init__(self) -> None:
        self.servers: list[FakeNetconfServer] = []
        self.settings: list[Any] = []
        self._responders: dict[str, Responder] = {}
        self._followups: dict[str, tuple[str, ...]] = {}

    def on(self, operation: str, responder: Responder) -> None:
        self._responders[operation] = responder

    def push_after(self, operation: str, *messages: str) -> None:
        self._followups[operation] = messages

    @property
    def rpcs(self) -> list[ET.Element]:
        return [rpc for server in self.servers for rpc in server.rpcs]

    async def connect(self, settings: Any) -> NetconfClient:
        self.settings.append(settings)
        client_stream, server_stream = create_stream_pair()
        server = FakeNetconfServer(server_stream, client_stream=client_stream)
        for operation, responder in self._responders.items():
            server.on(operation, responder)
        for operation, messages in self._followups.items():
            server.push_after(operation, *messages)
        server.start()
        self.servers.append(server)
        return await NetconfClient.connect(client_stream, settings.session_config())


@pytest.fixture
def cli_device(monkeypatch: pytest.MonkeyPatch) -> CliDevice:
    """Route CLI connections to in-memory fake servers."""
    device = CliDevice()
    monkeypatch.setattr("netconf_async.cli._connect", device.connect)
    return device
