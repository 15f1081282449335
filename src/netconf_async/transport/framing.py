"""NETCONF message framing (RFC 6242).

Two framing schemes exist:

End-of-message (base:1.0)
    <message bytes>]]>]]>

Chunked (base:1.1)
    \\n#<chunk-size>\\n<chunk bytes> ... \\n##\\n

The hello exchange always uses end-of-message framing. Right after it the
session selects the scheme for the rest of its lifetime (chunked when both
peers advertise base:1.1). Decoders are incremental so that bytes received
past the hello carry over into the decoder of the selected scheme.
"""

from __future__ import annotations

import logging
from collections import deque
from enum import Enum

from ..errors import FramingError
from .base import ByteStream

logger = logging.getLogger(__name__)

END_OF_MESSAGE = b"]]>]]>"
END_OF_CHUNKS = b"\n##\n"

MAX_CHUNK_SIZE = 4294967295
_MAX_CHUNK_DIGITS = len(str(MAX_CHUNK_SIZE))
_WHITESPACE = b" \t\r\n"


class FramingMode(str, Enum):
    """Wire framing scheme."""

    END_OF_MESSAGE = "end-of-message"
    CHUNKED = "chunked"


def encode_end_of_message(payload: bytes) -> bytes:
    """Terminate a message with the ]]>]]> sentinel."""
    if END_OF_MESSAGE in payload:
        raise FramingError("message contains the end-of-message sentinel")
    return payload + END_OF_MESSAGE


def encode_chunked(payload: bytes, chunk_size: int = 65536) -> bytes:
    """Split a message into chunks of at most chunk_size bytes."""
    if not 0 < chunk_size <= MAX_CHUNK_SIZE:
        raise ValueError(f"chunk_size out of range: {chunk_size}")
    if not payload:
        raise FramingError("cannot frame an empty message")

    parts: list[bytes] = []
    view = memoryview(payload)
    for offset in range(0, len(payload), chunk_size):
        chunk = view[offset : offset + chunk_size]
        parts.append(b"\n#%d\n" % len(chunk))
        parts.append(chunk.tobytes())
    parts.append(END_OF_CHUNKS)
    return b"".join(parts)


class EndOfMessageDecoder:
    """Incremental decoder for ]]>]]> terminated messages."""

    def __init__(self, initial: bytes = b"") -> None:
        self._buffer = bytearray(initial)
        # Offset below which no sentinel can start.
        self._searched = 0

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer += data
        messages: list[bytes] = []
        while True:
            index = self._buffer.find(END_OF_MESSAGE, self._searched)
            if index < 0:
                self._searched = max(0, len(self._buffer) - len(END_OF_MESSAGE) + 1)
                break
            self._searched = 0
            message = bytes(self._buffer[:index])
            del self._buffer[: index + len(END_OF_MESSAGE)]
            if message.strip(_WHITESPACE):
                messages.append(message)
        return messages

    def eof(self) -> None:
        """Check that the stream did not end in the middle of a message."""
        if self._buffer.strip(_WHITESPACE):
            raise FramingError(
                f"stream ended with {len(self._buffer)} bytes and no end-of-message sentinel"
            )

    def take_buffer(self) -> bytes:
        leftover = bytes(self._buffer)
        self._buffer.clear()
        self._searched = 0
        return leftover


class ChunkedDecoder:
    """Incremental decoder for chunked framing."""

    def __init__(self, initial: bytes = b"") -> None:
        self._buffer = bytearray(initial)
        self._chunks: list[bytes] = []
        self._remaining = 0

    def feed(self, data: bytes) -> list[bytes]:
        self._buffer += data
        messages: list[bytes] = []

        while True:
            if self._remaining:
                if not self._buffer:
                    break
                take = min(self._remaining, len(self._buffer))
                self._chunks.append(bytes(self._buffer[:take]))
                del self._buffer[:take]
                self._remaining -= take
                continue

            if not self._chunks:
                self._skip_interframe_whitespace()

            message = self._parse_header()
            if message is None:
                break
            if message:
                messages.append(message)

        return messages

    def _skip_interframe_whitespace(self) -> None:
        # Some peers emit a newline after the hello sentinel.
        while (
            len(self._buffer) >= 2
            and self._buffer[0] in _WHITESPACE
            and self._buffer[1:2] != b"#"
        ):
            del self._buffer[0]

    def _parse_header(self) -> bytes | None:
        """Consume one header.

        Returns None when more bytes are needed, b"" after a chunk header and
        the reassembled message after an end-of-chunks marker.
        """
        buf = self._buffer
        if not buf:
            return None
        if buf[0:1] != b"\n":
            raise FramingError(f"expected chunk header, got {bytes(buf[:16])!r}")
        if len(buf) < 2:
            return None
        if buf[1:2] != b"#":
            raise FramingError(f"expected '#' in chunk header, got {bytes(buf[:16])!r}")
        if len(buf) < 3:
            return None

        if buf[2:3] == b"#":
            if len(buf) < 4:
                return None
            if buf[3:4] != b"\n":
                raise FramingError("malformed end-of-chunks marker")
            if not self._chunks:
                raise FramingError("end-of-chunks marker without any chunk")
            del buf[:4]
            message = b"".join(self._chunks)
            self._chunks = []
            return message

        newline = buf.find(b"\n", 2)
        if newline < 0:
            if len(buf) - 2 > _MAX_CHUNK_DIGITS:
                raise FramingError("chunk-size header too long")
            return None

        digits = bytes(buf[2:newline])
        if (
            not digits
            or not digits.isdigit()
            or digits.startswith(b"0")
            or len(digits) > _MAX_CHUNK_DIGITS
        ):
            raise FramingError(f"invalid chunk-size {digits!r}")
        size = int(digits)
        if size > MAX_CHUNK_SIZE:
            raise FramingError(f"chunk-size {size} exceeds {MAX_CHUNK_SIZE}")

        del buf[: newline + 1]
        self._remaining = size
        return b""

    def eof(self) -> None:
        if self._remaining or self._chunks or self._buffer.strip(_WHITESPACE):
            raise FramingError("stream ended inside a chunked message")

    def take_buffer(self) -> bytes:
        leftover = bytes(self._buffer)
        self._buffer.clear()
        return leftover


class Framer:
    """Reads and writes framed messages on a ByteStream.

    Starts in end-of-message mode for the hello exchange. select_mode() may
    be called exactly once afterwards.
    """

    def __init__(
        self,
        stream: ByteStream,
        *,
        chunk_size: int = 65536,
        read_size: int = 65536,
    ) -> None:
        self._stream = stream
        self._chunk_size = chunk_size
        self._read_size = read_size
        self._mode = FramingMode.END_OF_MESSAGE
        self._mode_selected = False
        self._decoder: EndOfMessageDecoder | ChunkedDecoder = EndOfMessageDecoder()
        self._ready: deque[bytes] = deque()
        self._eof = False

    @property
    def mode(self) -> FramingMode:
        return self._mode

    def select_mode(self, mode: FramingMode) -> None:
        if self._mode_selected:
            raise FramingError(f"framing mode already selected ({self._mode.value})")
        self._mode_selected = True
        if mode != self._mode:
            leftover = self._decoder.take_buffer()
            self._decoder = ChunkedDecoder(leftover) if mode == FramingMode.CHUNKED else EndOfMessageDecoder(leftover)
            self._mode = mode
            self._ready.extend(self._decoder.feed(b""))
        logger.debug(f"Framing mode selected: {mode.value}")

    def encode(self, payload: bytes) -> bytes:
        if self._mode == FramingMode.CHUNKED:
            return encode_chunked(payload, self._chunk_size)
        return encode_end_of_message(payload)

    async def write_message(self, payload: bytes) -> None:
        await self.write_frame(self.encode(payload))

    async def write_frame(self, frame: bytes) -> None:
        """Write bytes already produced by encode()."""
        await self._stream.write(frame)

    async def read_message(self) -> bytes | None:
        """Return the next complete message, or None on a clean end of stream."""
        while not self._ready:
            if self._eof:
                return None
            data = await self._stream.read(self._read_size)
            if not data:
                self._eof = True
                self._decoder.eof()
                return None
            self._ready.extend(self._decoder.feed(data))
        return self._ready.popleft()
