"""Byte streams and message framing.

The session only needs a connected ByteStream. This package provides:
- framing: end-of-message and chunked framing (RFC 6242)
- streams: asyncio TCP and subprocess streams
- memory: connected in-memory stream pairs
"""

from .base import ByteStream
from .framing import (
    ChunkedDecoder,
    EndOfMessageDecoder,
    Framer,
    FramingMode,
    encode_chunked,
    encode_end_of_message,
)
from .memory import MemoryByteStream, create_stream_pair
from .streams import (
    AsyncioByteStream,
    SubprocessByteStream,
    open_subprocess_stream,
    open_tcp_stream,
)

__all__ = [
    # Contract
    "ByteStream",
    # Framing
    "ChunkedDecoder",
    "EndOfMessageDecoder",
    "Framer",
    "FramingMode",
    "encode_chunked",
    "encode_end_of_message",
    # Streams
    "AsyncioByteStream",
    "SubprocessByteStream",
    "open_subprocess_stream",
    "open_tcp_stream",
    "MemoryByteStream",
    "create_stream_pair",
]
