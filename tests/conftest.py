"""Shared test fixtures for ovpn-mgmt."""

import asyncio
import tempfile
from pathlib import Path

import pytest

from ovpn_mgmt.stream import MessageStream


@pytest.fixture
def short_tmp_path():
    """Create a short temporary path for Unix sockets.

    macOS has a 104-character limit for Unix socket paths.
    pytest's tmp_path is too long, so we use /tmp directly.
    """
    with tempfile.TemporaryDirectory(dir="/tmp", prefix="om_") as tmpdir:
        yield Path(tmpdir)


async def wait_until(condition, timeout=1.0, interval=0.01):
    """Wait until condition() returns True, or timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise TimeoutError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


class FakeWriter:
    """In-memory stand-in for asyncio.StreamWriter.

    Records every written line and calls on_line for each.
    """

    def __init__(self, on_line=None):
        self.written: list[str] = []
        self.on_line = on_line
        self.closed = False
        self.fail_with: Exception | None = None

    def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        for line in data.decode().splitlines():
            self.written.append(line)
            if self.on_line is not None:
                self.on_line(line)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True

    def is_closing(self) -> bool:
        return self.closed

    async def wait_closed(self) -> None:
        pass


class FakePeer:
    """Scripted peer on an in-memory StreamReader.

    replies maps a command line to the lines sent back when it is written.
    Commands without a scripted reply get no answer until push() is called.
    Must be created inside a running event loop.
    """

    def __init__(self, replies: dict[str, list[str]] | None = None):
        self.reader = asyncio.StreamReader()
        self.writer = FakeWriter(on_line=self._on_command)
        self.replies = dict(replies or {})

    @property
    def commands(self) -> list[str]:
        return self.writer.written

    def _on_command(self, line: str) -> None:
        if line in self.replies:
            self.push(*self.replies[line])

    def push(self, *lines: str) -> None:
        """Send lines to the client, CRLF-terminated like OpenVPN does."""
        for line in lines:
            self.reader.feed_data((line + "\r\n").encode())

    def eof(self) -> None:
        self.reader.feed_eof()

    def stream(self, **kwargs) -> MessageStream:
        """Create and start a MessageStream wired to this peer."""
        kwargs.setdefault("default_timeout", 2.0)
        stream = MessageStream(self.reader, self.writer, **kwargs)
        stream.start()
        return stream


class UnixPeer:
    """Minimal management interface served on a Unix socket.

    Sends a greeting (or a password prompt), then answers scripted commands.
    Unknown commands get ``ERROR: unknown command``.
    """

    BANNER = ">INFO:OpenVPN Management Interface Version 5 -- type 'help' for more info"

    def __init__(self, socket_path: Path, replies=None, password: str | None = None):
        self.socket_path = socket_path
        self.replies = dict(replies or {})
        self.password = password
        self.received: list[str] = []
        self.writers: list[asyncio.StreamWriter] = []
        self._server: asyncio.Server | None = None

    async def start(self) -> None:
        self._server = await asyncio.start_unix_server(self._handle, path=str(self.socket_path))

    async def stop(self) -> None:
        for writer in self.writers:
            writer.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def push(self, *lines: str) -> None:
        for writer in self.writers:
            for line in lines:
                writer.write((line + "\r\n").encode())
            await writer.drain()

    async def _handle(self, reader, writer) -> None:
        self.writers.append(writer)
        try:
            if self.password is not None:
                writer.write(b"ENTER PASSWORD:")
                await writer.drain()
                attempt = (await reader.readline()).decode().strip()
                if attempt != self.password:
                    writer.write(b"ERROR: bad password\r\n")
                    await writer.drain()
                    return
                writer.write(b"SUCCESS: password is correct\r\n")
            writer.write((self.BANNER + "\r\n").encode())
            await writer.drain()

            while True:
                raw = await reader.readline()
                if not raw:
                    break
                command = raw.decode().strip()
                self.received.append(command)
                lines = self.replies.get(command, ["ERROR: unknown command, enter 'help' for more options"])
                for line in lines:
                    writer.write((line + "\r\n").encode())
                await writer.drain()
        except ConnectionError:
            pass
        finally:
            writer.close()
