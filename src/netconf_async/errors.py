"""Exception hierarchy for the NETCONF client.

Errors fall into four groups:
- Transport errors: the stream, the framing or the handshake is broken.
  These are fatal and close the session.
- Protocol errors: the peer answered a call with one or more <rpc-error>
  records. Only the call that received them fails.
- Validation errors: options or arguments rejected locally before anything
  is written to the stream.
- Timeouts: the caller stopped waiting. The request may still run remotely.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .protocol.messages import RPCErrorRecord


class NetconfError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(NetconfError):
    """Fatal stream failure. The session cannot be used afterwards."""


class FramingError(TransportError):
    """The byte stream does not follow the negotiated framing."""


class DecodeError(TransportError):
    """A framed message could not be decoded as a NETCONF message."""


class HandshakeError(TransportError):
    """The hello exchange failed or produced an unusable result."""


class SessionClosedError(NetconfError):
    """The session is closed, or closed while the call was waiting."""

    def __init__(self, message: str = "session closed", cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ValidationError(NetconfError, ValueError):
    """Arguments or options rejected locally. Nothing was sent."""


class CallTimeoutError(NetconfError, TimeoutError):
    """The caller's deadline passed before a reply arrived."""

    def __init__(self, message_id: int, timeout: float) -> None:
        super().__init__(f"no reply to message-id {message_id} within {timeout:.2f}s")
        self.message_id = message_id
        self.timeout = timeout


class RPCError(NetconfError):
    """The peer replied with one or more <rpc-error> records."""

    def __init__(self, errors: list[RPCErrorRecord], message_id: int | None = None) -> None:
        self.errors = errors
        self.message_id = message_id
        super().__init__(self._describe())

    def _describe(self) -> str:
        if not self.errors:
            return "rpc-error"
        parts = [str(error) for error in self.errors]
        if len(parts) == 1:
            return parts[0]
        return f"{len(parts)} errors: " + "; ".join(parts)

    @property
    def severity(self) -> str | None:
        return self.errors[0].severity if self.errors else None

    @property
    def tag(self) -> str | None:
        return self.errors[0].tag if self.errors else None

    @property
    def path(self) -> str | None:
        return self.errors[0].path if self.errors else None

    @property
    def error_message(self) -> str | None:
        return self.errors[0].message if self.errors else None
