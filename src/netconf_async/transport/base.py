"""Byte stream contract consumed by the session.

The session never opens connections itself. Whatever authenticates and
connects (SSH subprocess, TCP socket, in-memory pipe for tests) hands over
an object implementing ByteStream.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ByteStream(Protocol):
    """Ordered, reliable, bidirectional byte channel.

    - read: return up to n bytes, b"" once the peer has closed
    - write: send all bytes, raise on failure
    - close: release the channel; must be safe to call more than once
    """

    async def read(self, n: int) -> bytes:
        ...

    async def write(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        ...
