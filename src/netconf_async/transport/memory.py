"""In-memory byte streams.

create_stream_pair() returns two connected ByteStreams, one for the client
side and one for a scripted peer. Used by the test suite and for exercising
a session without a real device.
"""

from __future__ import annotations

import asyncio


class MemoryByteStream:
    """One end of an in-memory pipe."""

    def __init__(self) -> None:
        self._incoming: asyncio.Queue[bytes] = asyncio.Queue()
        self._buffer = bytearray()
        self._peer: MemoryByteStream | None = None
        self._closed = False
        self._eof = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _connect(self, peer: MemoryByteStream) -> None:
        self._peer = peer

    async def read(self, n: int) -> bytes:
        if not self._buffer:
            if self._eof:
                return b""
            data = await self._incoming.get()
            if not data:
                self._eof = True
                return b""
            self._buffer += data
        chunk = bytes(self._buffer[:n])
        del self._buffer[:n]
        return chunk

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("stream is closed")
        if self._peer is None or self._peer._closed:
            raise BrokenPipeError("peer is closed")
        if data:
            self._peer._incoming.put_nowait(bytes(data))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # Wake our own pending reader and signal EOF to the peer.
        self._incoming.put_nowait(b"")
        if self._peer is not None:
            self._peer._incoming.put_nowait(b"")


def create_stream_pair() -> tuple[MemoryByteStream, MemoryByteStream]:
    """Create two connected in-memory streams."""
    left = MemoryByteStream()
    right = MemoryByteStream()
    left._connect(right)
    right._connect(left)
    return left, right
