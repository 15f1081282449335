"""High-level NETCONF operations.

NetconfClient wraps an open Session with one method per protocol
operation. Each method builds a typed request, validates it locally, then
sends it through the session and waits for the reply.

Usage:
    async with await connect_tcp("router1") as client:
        config = await client.get_config(Datastore.RUNNING, filter="/interfaces")
        await client.edit_config(Datastore.CANDIDATE, "<interfaces>...</interfaces>")
        await client.commit(CommitOptions(confirmed=True, confirm_timeout=120))
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from typing import Any

from .capabilities import CapabilitySet
from .errors import ValidationError
from .filters import FilterLike
from .protocol.codec import URL, ConfigLike, Datastore, DatastoreLike, SourceLike
from .protocol.messages import Notification, RPCReply
from .protocol.operations import (
    CancelCommitRequest,
    CommitOptions,
    CommitRequest,
    CopyConfigRequest,
    CreateSubscriptionRequest,
    DeleteConfigRequest,
    DiscardChangesRequest,
    EditConfigOptions,
    EditConfigRequest,
    GetConfigRequest,
    GetRequest,
    KillSessionRequest,
    LockRequest,
    RawRequest,
    Request,
    SubscriptionOptions,
    UnlockRequest,
    ValidateRequest,
)
from .session import CONFIG_TIMEOUT, Session, SessionConfig
from .transport.base import ByteStream
from .transport.streams import open_subprocess_stream, open_tcp_stream

logger = logging.getLogger(__name__)


class NetconfClient:
    """Protocol operations over one NETCONF session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @classmethod
    async def connect(cls, stream: ByteStream, config: SessionConfig | None = None) -> NetconfClient:
        """Open a session on a connected stream."""
        return cls(await Session.open(stream, config))

    @property
    def session_id(self) -> int | None:
        return self.session.session_id

    @property
    def capabilities(self) -> CapabilitySet:
        return self.session.capabilities

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def dispatch(
        self,
        request: Request | ET.Element | str | bytes,
        timeout: float | None = CONFIG_TIMEOUT,
    ) -> RPCReply:
        """Send any request, typed or raw, and return the reply.

        Raises:
            ValidationError: Invalid request, or a capability the peer lacks
                when config.enforce_capabilities is set
            RPCError: The peer answered with <rpc-error>
        """
        if not isinstance(request, Request):
            request = RawRequest(request)
        if self.session.config.enforce_capabilities:
            self._check_capabilities(request)
        return await self.session.call(request, timeout)

    def _check_capabilities(self, request: Request) -> None:
        missing = [c for c in request.required_capabilities() if not self.capabilities.supports(c)]
        if missing:
            raise ValidationError(f"<{request.operation}> needs capabilities the peer lacks: {', '.join(missing)}")

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def get_config(
        self,
        source: DatastoreLike = Datastore.RUNNING,
        filter: FilterLike | None = None,
    ) -> str:
        """Retrieve a datastore. Returns the inner XML of <data>.

        filter is an XPath-like path, translated into a subtree filter, or
        a prepared <filter> element.
        """
        reply = await self.dispatch(GetConfigRequest(source=source, filter=filter))
        return reply.data or ""

    async def get(self, filter: FilterLike | None = None) -> str:
        """Retrieve running configuration and state data."""
        reply = await self.dispatch(GetRequest(filter=filter))
        return reply.data or ""

    # -------------------------------------------------------------------------
    # Configuration changes
    # -------------------------------------------------------------------------

    async def edit_config(
        self,
        target: DatastoreLike,
        config: ConfigLike | URL,
        options: EditConfigOptions | None = None,
    ) -> RPCReply:
        request = EditConfigRequest(target=target, config=config, options=options or EditConfigOptions())
        return await self.dispatch(request)

    async def copy_config(self, source: SourceLike, target: Datastore | URL | str) -> RPCReply:
        return await self.dispatch(CopyConfigRequest(source=source, target=target))

    async def delete_config(self, target: Datastore | URL | str) -> RPCReply:
        return await self.dispatch(DeleteConfigRequest(target=target))

    async def validate(self, source: SourceLike) -> RPCReply:
        return await self.dispatch(ValidateRequest(source=source))

    async def commit(self, options: CommitOptions | None = None) -> RPCReply:
        """Commit the candidate datastore.

        A confirmed commit is rolled back by the peer unless confirmed again
        (another commit, possibly with persist_id) before its timeout.
        """
        return await self.dispatch(CommitRequest.from_options(options))

    async def cancel_commit(self, persist_id: str | None = None) -> RPCReply:
        return await self.dispatch(CancelCommitRequest(persist_id=persist_id))

    async def discard_changes(self) -> RPCReply:
        return await self.dispatch(DiscardChangesRequest())

    # -------------------------------------------------------------------------
    # Locks and sessions
    # -------------------------------------------------------------------------

    async def lock(self, target: DatastoreLike = Datastore.RUNNING) -> RPCReply:
        return await self.dispatch(LockRequest(target=target))

    async def unlock(self, target: DatastoreLike = Datastore.RUNNING) -> RPCReply:
        return await self.dispatch(UnlockRequest(target=target))

    async def kill_session(self, session_id: int) -> RPCReply:
        return await self.dispatch(KillSessionRequest(session_id=session_id))

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def create_subscription(self, options: SubscriptionOptions | None = None) -> RPCReply:
        """Start receiving notifications; read them from notifications()."""
        request = CreateSubscriptionRequest(options=options or SubscriptionOptions())
        reply = await self.dispatch(request)
        logger.info(f"Subscribed to notification stream {request.stream}")
        return reply

    def notifications(self) -> AsyncIterator[Notification]:
        return self.session.notifications()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        await self.session.close()

    async def __aenter__(self) -> NetconfClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


async def connect_tcp(
    host: str,
    port: int = 830,
    config: SessionConfig | None = None,
) -> NetconfClient:
    """Connect over plain TCP and run the hello exchange."""
    stream = await open_tcp_stream(host, port)
    return await NetconfClient.connect(stream, config)


async def connect_command(
    command: list[str],
    config: SessionConfig | None = None,
    *,
    working_directory: str | None = None,
    env: dict[str, str] | None = None,
) -> NetconfClient:
    """Run a command (e.g. ssh -s host netconf) and speak NETCONF over its stdio."""
    if not command:
        raise ValidationError("command cannot be empty")
    stream = await open_subprocess_stream(command, working_directory=working_directory, env=env)
    return await NetconfClient.connect(stream, config)
