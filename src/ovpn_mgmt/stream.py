"""Message stream over the management socket.

One background task reads lines and routes them:
- Notification lines go to the NotificationSink
- Everything else goes to the ResponseAssembler, which completes the oldest
  PendingCommand

Callers use send(), which writes one command line and waits for its reply.
Writes happen under a lock, and each command is queued in the same step as
its write, so queue order always equals wire order. The peer answers in that
order, which is what makes correlation possible without request ids.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from ovpn_mgmt.assembler import ResponseAssembler
from ovpn_mgmt.config import ProtocolConfig
from ovpn_mgmt.errors import CommandCancelled, CommandTimeout, ConnectionClosed
from ovpn_mgmt.notifications import NotificationSink, Observer, OverflowPolicy, Subscription
from ovpn_mgmt.pending import PendingCommand, PendingTable
from ovpn_mgmt.protocol import (
    LineKind,
    Notification,
    NotificationCategory,
    NotificationParser,
    ReceiveInfo,
    ReplyShape,
    ReplyStatus,
    classify,
    parse_status_line,
)
from ovpn_mgmt.reader import LineReader

if TYPE_CHECKING:
    from ovpn_mgmt.config import Config

log = structlog.get_logger()

# Sentinel: "use the stream's default timeout"
_DEFAULT = object()


class MessageStream:
    """Request/response client for one management interface connection.

    Create with connect() (or from_config()), or wrap already-open streams
    with the constructor and call start().

    Usage:
        async with await MessageStream.connect(socket_path=path) as stream:
            info = await stream.send("state", timeout=5)
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        conventions: ProtocolConfig | None = None,
        encoding: str = "utf-8",
        default_timeout: float | None = 20.0,
        max_pending: int = 32,
        queue_size: int = 256,
        overflow: OverflowPolicy = OverflowPolicy.DROP_NEWEST,
    ) -> None:
        self.conventions = conventions or ProtocolConfig()
        self.encoding = encoding
        self.default_timeout = default_timeout
        self.banner: str | None = None
        self._lines = LineReader(reader, encoding)
        self._writer = writer
        self._table = PendingTable(max_pending)
        self._assembler = ResponseAssembler(self._table, self.conventions)
        self._parser = NotificationParser(self.conventions)
        self._sink = NotificationSink(queue_size, overflow)
        self._write_lock = asyncio.Lock()
        self._read_task: asyncio.Task | None = None
        self._closed = False
        self._close_reason = ""
        self._closed_event = asyncio.Event()

    # ─────────────────────────────────────────────────────────────────────
    # Construction
    # ─────────────────────────────────────────────────────────────────────

    @classmethod
    async def connect(
        cls,
        *,
        socket_path: Path | str | None = None,
        host: str = "127.0.0.1",
        port: int = 7505,
        password: str | None = None,
        connect_timeout: float = 5.0,
        line_limit: int = 64 * 1024,
        **kwargs,
    ) -> MessageStream:
        """Open a connection, handle the greeting and start reading.

        Raises:
            FileNotFoundError: If socket_path doesn't exist
            ConnectionClosed: If the greeting or password exchange fails
            TimeoutError: If the peer doesn't greet within connect_timeout
        """
        if socket_path is not None:
            socket_path = Path(socket_path)
            if not socket_path.exists():
                raise FileNotFoundError(f"Socket not found: {socket_path}")
            opener = asyncio.open_unix_connection(str(socket_path), limit=line_limit)
            target = str(socket_path)
        else:
            opener = asyncio.open_connection(host, port, limit=line_limit)
            target = f"{host}:{port}"

        reader, writer = await asyncio.wait_for(opener, timeout=connect_timeout)
        stream = cls(reader, writer, **kwargs)
        try:
            await asyncio.wait_for(stream._handshake(password), timeout=connect_timeout)
        except BaseException:
            writer.close()
            raise
        stream.start()
        log.info("stream_connected", target=target)
        return stream

    @classmethod
    async def from_config(cls, config: Config) -> MessageStream:
        """Connect using the [connection], [commands], [notifications] and [protocol] sections."""
        conn = config.connection
        return await cls.connect(
            socket_path=conn.socket_path or None,
            host=conn.host,
            port=conn.port,
            password=conn.password or None,
            connect_timeout=conn.connect_timeout,
            line_limit=conn.line_limit,
            conventions=config.protocol,
            encoding=conn.encoding,
            default_timeout=config.commands.default_timeout or None,
            max_pending=config.commands.max_pending,
            queue_size=config.notifications.queue_size,
            overflow=OverflowPolicy(config.notifications.overflow),
        )

    async def _handshake(self, password: str | None) -> None:
        """Answer the password prompt if the peer shows one.

        A peer without a management password greets with an >INFO line,
        which is routed like any other line.
        """
        greeting = await self._lines.read_greeting(self.conventions.password_prompt)
        if greeting != self.conventions.password_prompt:
            self._handle_line(greeting)
            return

        if not password:
            raise ConnectionClosed("Peer requires a management password")
        self._writer.write(password.encode(self.encoding) + b"\n")
        await self._writer.drain()

        while True:
            line = await self._lines.readline()
            if line is None:
                raise ConnectionClosed("Connection closed during password exchange")
            line = line.removeprefix(self.conventions.password_prompt)
            if not line:
                continue
            kind = classify(line, False, self.conventions)
            if kind is LineKind.STATUS:
                status, body = parse_status_line(line, self.conventions)
                if status is ReplyStatus.ERROR:
                    raise ConnectionClosed(f"Password rejected: {body}")
                log.debug("password_accepted")
                return
            if kind is LineKind.NOTIFICATION:
                self._handle_line(line)

    def start(self) -> None:
        """Start the background read task."""
        if self._read_task is None:
            self._read_task = asyncio.get_running_loop().create_task(self._read_loop())

    # ─────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> str:
        return self._close_reason

    async def wait_closed(self) -> str:
        """Wait until the stream closes (peer EOF, I/O error or close()).

        Returns:
            The close reason
        """
        await self._closed_event.wait()
        return self._close_reason

    @property
    def pending_count(self) -> int:
        """Commands on the wire still owed a reply (abandoned ones included)."""
        return len(self._table)

    async def send(
        self,
        command: str,
        timeout: float | None = _DEFAULT,  # type: ignore[assignment]
        cancel: asyncio.Event | None = None,
        expect: ReplyShape = ReplyShape.ANY,
    ) -> ReceiveInfo:
        """Write a command and wait for its reply.

        Args:
            command: One command line, without the newline
            timeout: Seconds until CommandTimeout (None = wait forever);
                defaults to the stream's default_timeout
            cancel: Event that, once set, cancels this command only
            expect: Reply shape to enforce; a mismatch raises MalformedReply

        Returns:
            The reply. An ERROR status is returned, not raised; use
            ReceiveInfo.raise_for_status() to turn it into ProtocolError.

        Raises:
            ConnectionClosed: Stream closed before or while waiting
            CommandTimeout: No reply within timeout
            CommandCancelled: cancel was set first
            MalformedReply: Reply didn't match expect
        """
        if self._closed:
            raise ConnectionClosed(self._close_reason)
        if "\n" in command or "\r" in command:
            raise ValueError(f"Command must be a single line: {command!r}")
        if timeout is _DEFAULT:
            timeout = self.default_timeout

        loop = asyncio.get_running_loop()
        entry = PendingCommand(
            command=command,
            future=loop.create_future(),
            deadline=None if timeout is None else loop.time() + timeout,
            expect=expect,
        )

        submit = loop.create_task(self._submit(entry))
        waiters: set[asyncio.Future] = {submit}
        cancel_wait = None
        if cancel is not None:
            cancel_wait = loop.create_task(cancel.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            self._abandon(entry, submit, CommandCancelled(command))
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if submit in done:
            return submit.result()
        if entry.future.done():
            # Reply arrived in the same loop pass as the timeout or cancel
            submit.cancel()
            submit.add_done_callback(_consume_result)
            return entry.future.result()

        if cancel_wait is not None and cancel_wait in done:
            exc: Exception = CommandCancelled(command)
            log.info("command_cancelled", command=command)
        else:
            exc = CommandTimeout(command, timeout)
            log.warning("command_timeout", command=command, timeout=timeout)
        self._abandon(entry, submit, exc)
        raise exc

    def subscribe(
        self,
        observer: Observer,
        *,
        categories: Iterable[NotificationCategory] | None = None,
        queue_size: int | None = None,
    ) -> Subscription:
        """Register a notification observer. Call the returned handle to detach."""
        if self._closed:
            raise ConnectionClosed(self._close_reason)
        return self._sink.subscribe(observer, categories=categories, queue_size=queue_size)

    async def close(self) -> None:
        """Close the connection and fail every pending command. Idempotent."""
        self._shutdown("Stream closed")
        task = self._read_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._sink.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def __aenter__(self) -> MessageStream:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────

    async def _submit(self, entry: PendingCommand) -> ReceiveInfo:
        """Queue and write one command, then wait for its reply."""
        await self._table.acquire_slot()
        pushed = False
        try:
            async with self._write_lock:
                if self._closed:
                    raise ConnectionClosed(self._close_reason)
                data = entry.command.encode(self.encoding) + b"\n"
                # No await between push and write: queue order == wire order
                self._table.push(entry)
                pushed = True
                try:
                    self._writer.write(data)
                    await self._writer.drain()
                except (ConnectionError, OSError) as e:
                    # Fails this entry too; the await below raises it
                    self._shutdown(f"Write failed: {e}")
                else:
                    log.debug("command_sent", command=entry.command, pending=len(self._table))
        finally:
            if not pushed:
                self._table.release_slot()
        return await entry.future

    def _abandon(self, entry: PendingCommand, submit: asyncio.Task, exc: Exception) -> None:
        """Fail the caller's entry; its queue slot waits for the late reply."""
        entry.abandon(exc)
        entry.future.add_done_callback(_consume_result)
        submit.cancel()
        submit.add_done_callback(_consume_result)

    async def _read_loop(self) -> None:
        reason = "Connection closed by peer"
        try:
            async for line in self._lines:
                self._handle_line(line)
        except ConnectionClosed as e:
            reason = str(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("read_loop_failed")
            reason = f"Read loop failed: {e}"
        for notification in self._parser.flush():
            self._publish(notification)
        self._shutdown(reason)

    def _handle_line(self, line: str) -> None:
        kind = classify(line, self._assembler.accumulating, self.conventions)
        if kind is LineKind.NOTIFICATION:
            for notification in self._parser.feed(line):
                self._publish(notification)
        else:
            self._assembler.feed(kind, line)

    def _publish(self, notification: Notification) -> None:
        if notification.category is NotificationCategory.INFO and self.banner is None:
            self.banner = notification.payload
        self._sink.publish(notification)

    def _shutdown(self, reason: str) -> None:
        """Terminal: fail all pending commands in one sweep. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason
        self._closed_event.set()
        self._assembler.reset()
        failed = self._table.fail_all(reason)
        self._writer.close()
        log.info("stream_closed", reason=reason, failed_pending=failed)


def _consume_result(future: asyncio.Future) -> None:
    """Retrieve an abandoned outcome so asyncio doesn't warn about it."""
    if not future.cancelled():
        future.exception()
