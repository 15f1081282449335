"""asyncio-backed byte streams.

- AsyncioByteStream: wraps a StreamReader/StreamWriter pair (TCP, Unix sockets)
- SubprocessByteStream: talks to a child process over stdin/stdout, e.g.
  `ssh -s router.example.net netconf`, so that authentication and transport
  security stay with the external command

Neither does any NETCONF work; they only move bytes.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os

logger = logging.getLogger(__name__)


class AsyncioByteStream:
    """ByteStream over an asyncio StreamReader/StreamWriter."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self, n: int) -> bytes:
        return await self._reader.read(n)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("stream is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        with contextlib.suppress(ConnectionError):
            await self._writer.wait_closed()


async def open_tcp_stream(host: str, port: int = 830) -> AsyncioByteStream:
    """Open a plain TCP connection to a NETCONF endpoint."""
    reader, writer = await asyncio.open_connection(host, port)
    logger.info(f"Connected to {host}:{port}")
    return AsyncioByteStream(reader, writer)


class SubprocessByteStream:
    """ByteStream over a child process's stdin/stdout.

    stderr of the child is forwarded to the debug log.
    """

    def __init__(
        self,
        command: list[str],
        working_directory: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command = command
        self.working_directory = working_directory
        self.env = env
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._closed = False

    async def start(self) -> None:
        """Launch the subprocess."""
        env = None
        if self.env:
            env = {**os.environ, **self.env}

        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.working_directory,
            env=env,
        )
        self._stderr_task = asyncio.create_task(self._read_stderr())
        logger.info(f"Launched subprocess: {' '.join(self.command)} (pid={self._process.pid})")

    async def read(self, n: int) -> bytes:
        if not self._process or not self._process.stdout:
            raise ConnectionError("Process not running")
        return await self._process.stdout.read(n)

    async def write(self, data: bytes) -> None:
        if self._closed or not self._process or not self._process.stdin:
            raise ConnectionError("Process not running")
        self._process.stdin.write(data)
        await self._process.stdin.drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._process and self._process.stdin:
            with contextlib.suppress(ConnectionError):
                self._process.stdin.close()

        if self._stderr_task:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task

        if self._process:
            if self._process.returncode is None:
                self._process.terminate()
                try:
                    await asyncio.wait_for(self._process.wait(), timeout=5.0)
                except TimeoutError:
                    self._process.kill()
                    await self._process.wait()
            logger.info(f"Subprocess terminated (pid={self._process.pid})")
            self._process = None

    async def _read_stderr(self) -> None:
        if not self._process or not self._process.stderr:
            return

        try:
            while True:
                line = await self._process.stderr.readline()
                if not line:
                    break
                logger.debug(f"[subprocess stderr] {line.decode('utf-8', 'replace').strip()}")
        except asyncio.CancelledError:
            pass


async def open_subprocess_stream(
    command: list[str],
    working_directory: str | None = None,
    env: dict[str, str] | None = None,
) -> SubprocessByteStream:
    """Launch a command and use its stdin/stdout as the byte stream."""
    stream = SubprocessByteStream(command, working_directory=working_directory, env=env)
    await stream.start()
    return stream
