"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator

import pytest

from netconf_async.transport import MemoryByteStream, create_stream_pair


@pytest.fixture
async def stream_pair() -> AsyncIterator[tuple[MemoryByteStream, MemoryByteStream]]:
    """Two connected in-memory streams, closed at teardown."""
    left, right = create_stream_pair()
    yield left, right
    await left.close()
    await right.close()
