"""Decoded NETCONF messages.

These are the receive side of the protocol:
- Hello: capabilities and session-id advertised by the peer
- RPCReply: the answer to one <rpc>, correlated by message-id
- Notification: an event pushed by the peer after <create-subscription>

Request types live in operations.py.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class Hello(BaseModel):
    """A <hello> message."""

    capabilities: list[str] = Field(default_factory=list)
    session_id: int | None = None


class RPCErrorRecord(BaseModel):
    """One <rpc-error> record from a reply.

    Example:
        <rpc-error>
          <error-type>application</error-type>
          <error-tag>invalid-value</error-tag>
          <error-severity>error</error-severity>
          <error-path>/t:top/t:interface[t:name="Ethernet0/0"]/t:mtu</error-path>
          <error-message xml:lang="en">MTU value 25000 is not within range 256..9192</error-message>
        </rpc-error>
    """

    type: str | None = None
    tag: str | None = None
    severity: str | None = None
    app_tag: str | None = None
    path: str | None = None
    message: str | None = None
    info: str | None = None  # raw <error-info> content

    @property
    def is_warning(self) -> bool:
        return self.severity == "warning"

    def __str__(self) -> str:
        head = f"{self.severity or 'error'} {self.type or ''}/{self.tag or ''}".replace(" /", " ")
        text = f"{head}: {self.message}" if self.message else head
        if self.path:
            text += f" (path: {self.path})"
        return text


class RPCReply(BaseModel):
    """An <rpc-reply>.

    A reply carries an <ok/> acknowledgement, a <data> payload (returned as
    its raw inner XML), or one or more <rpc-error> records.
    """

    message_id: int | None = None
    ok: bool = False
    data: str | None = None
    errors: list[RPCErrorRecord] = Field(default_factory=list)
    raw: str = ""

    def error_records(self, include_warnings: bool = True) -> list[RPCErrorRecord]:
        if include_warnings:
            return list(self.errors)
        return [e for e in self.errors if not e.is_warning]


class Notification(BaseModel):
    """An RFC 5277 <notification>.

    Notifications are not tied to a message-id. The stream name is not on
    the wire; the session fills in the stream it subscribed to.
    """

    stream: str = "NETCONF"
    event_time: datetime
    event_name: str | None = None
    payload: str = ""  # raw XML of the event element(s)
    raw: str = ""
