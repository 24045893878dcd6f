"""Assembles reply lines into ReceiveInfo values for the oldest pending command."""

from __future__ import annotations

import asyncio

import structlog

from ovpn_mgmt.config import ProtocolConfig
from ovpn_mgmt.errors import MalformedReply
from ovpn_mgmt.pending import PendingCommand, PendingTable
from ovpn_mgmt.protocol import (
    LineKind,
    ReceiveInfo,
    ReplyShape,
    ReplyStatus,
    parse_status_line,
)

log = structlog.get_logger()


class ResponseAssembler:
    """Consumes reply lines and completes the head of the pending FIFO.

    Two reply shapes:
    - Single status line (``SUCCESS: ...`` / ``ERROR: ...``), done at once
    - Block of content lines closed by the terminator

    Error-tagged replies are delivered as ReceiveInfo with ERROR status;
    nothing here raises for them.
    """

    def __init__(self, table: PendingTable, conventions: ProtocolConfig | None = None) -> None:
        self.table = table
        self.conventions = conventions or ProtocolConfig()
        self._block: list[str] | None = None

    @property
    def accumulating(self) -> bool:
        """Whether a block reply is in progress."""
        return self._block is not None

    def feed(self, kind: LineKind, line: str) -> None:
        """Consume one reply line (anything but a notification)."""
        if kind is LineKind.STATUS:
            status, body = parse_status_line(line, self.conventions)
            self._complete(ReplyShape.SINGLE, status, body, (body,))
        elif kind is LineKind.CONTENT:
            if self._block is None:
                self._block = []
            self._block.append(line)
        elif kind is LineKind.TERMINATOR:
            # Without an open block this is an empty reply (`log all` with no history)
            lines = tuple(self._block or ())
            self._block = None
            self._complete(ReplyShape.BLOCK, ReplyStatus.SUCCESS, "\n".join(lines), lines)
        else:
            raise ValueError(f"Not a reply line kind: {kind}")

    def reset(self) -> None:
        """Drop a partial block (connection lost mid-reply)."""
        self._block = None

    def _complete(
        self,
        shape: ReplyShape,
        status: ReplyStatus,
        body: str,
        lines: tuple[str, ...],
    ) -> None:
        entry = self.table.pop_head()
        if entry is None:
            log.warning("reply_discarded", reason="unmatched", shape=shape.value, body=body[:200])
            return
        if entry.abandoned:
            log.info(
                "reply_discarded",
                reason="abandoned",
                command=entry.command,
                overdue=entry.overdue(asyncio.get_running_loop().time()),
            )
            return

        mismatch = _shape_mismatch(entry, shape, status)
        if mismatch:
            log.warning("reply_malformed", command=entry.command, reason=mismatch)
            entry.fail(MalformedReply(entry.command, mismatch))
            return

        entry.resolve(ReceiveInfo(status=status, body=body, command=entry.command, lines=lines))
        log.debug("reply_received", command=entry.command, status=status.value, lines=len(lines))


def _shape_mismatch(entry: PendingCommand, shape: ReplyShape, status: ReplyStatus) -> str:
    """Describe why a reply cannot belong to entry, or return ''.

    Errors are always single-line, so an error status is acceptable for a
    command that expects a block.
    """
    if entry.expect is ReplyShape.ANY or entry.expect is shape:
        return ""
    if entry.expect is ReplyShape.BLOCK and status is ReplyStatus.ERROR:
        return ""
    return f"expected {entry.expect.value} reply, got {shape.value}"
