"""Line reader over an asyncio stream."""

from __future__ import annotations

import asyncio

from ovpn_mgmt.errors import ConnectionClosed


class LineReader:
    """Async iterator of decoded protocol lines.

    Ends on EOF. I/O failures and over-long lines end the iteration with
    ConnectionClosed. The reader holds no state between lines, so cancelling
    the task that iterates it is always safe.
    """

    def __init__(self, reader: asyncio.StreamReader, encoding: str = "utf-8") -> None:
        self._reader = reader
        self.encoding = encoding

    def __aiter__(self) -> LineReader:
        return self

    async def __anext__(self) -> str:
        line = await self.readline()
        if line is None:
            raise StopAsyncIteration
        return line

    def _decode(self, raw: bytes) -> str:
        return raw.decode(self.encoding, errors="replace").rstrip("\r\n")

    async def readline(self) -> str | None:
        """Read one line, or None at EOF.

        Raises:
            ConnectionClosed: On read failure or when a line exceeds the
                stream's limit.
        """
        try:
            raw = await self._reader.readline()
        except ValueError as e:
            # StreamReader.readline reports limit overruns as ValueError
            raise ConnectionClosed(f"Line too long: {e}") from e
        except OSError as e:
            raise ConnectionClosed(f"Read failed: {e}") from e

        if not raw:
            return None
        return self._decode(raw)

    async def read_greeting(self, prompt: str) -> str:
        """Read the peer's first line, or its password prompt.

        The password prompt is written without a trailing newline, so the
        greeting is read byte by byte until either a newline or the exact
        prompt shows up.

        Returns:
            The prompt itself, or the first decoded line

        Raises:
            ConnectionClosed: If the peer closes before greeting
        """
        target = prompt.encode(self.encoding)
        buf = bytearray()
        while True:
            try:
                chunk = await self._reader.read(1)
            except OSError as e:
                raise ConnectionClosed(f"Read failed: {e}") from e
            if not chunk:
                raise ConnectionClosed("Connection closed during greeting")
            buf += chunk
            if chunk == b"\n":
                return self._decode(bytes(buf))
            if buf == target:
                return prompt
