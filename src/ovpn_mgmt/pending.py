"""FIFO of commands written to the peer and still owed a reply."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass

from ovpn_mgmt.errors import ConnectionClosed
from ovpn_mgmt.protocol import ReceiveInfo, ReplyShape


@dataclass
class PendingCommand:
    """Bookkeeping for one in-flight command.

    The future is completed exactly once. An abandoned entry (timed out or
    cancelled) keeps its place in the FIFO until the peer's late reply
    arrives, so that reply is thrown away instead of landing on the next
    command.
    """

    command: str
    future: asyncio.Future[ReceiveInfo]
    deadline: float | None = None  # loop.time() based; None = no deadline
    expect: ReplyShape = ReplyShape.ANY
    abandoned: bool = False

    @property
    def done(self) -> bool:
        return self.future.done()

    def overdue(self, now: float) -> float | None:
        """Seconds past the deadline at loop time now (None without a deadline)."""
        if self.deadline is None:
            return None
        return max(0.0, now - self.deadline)

    def resolve(self, info: ReceiveInfo) -> bool:
        """Complete with a reply. Returns False if already completed."""
        if self.future.done():
            return False
        self.future.set_result(info)
        return True

    def fail(self, exc: BaseException) -> bool:
        """Complete with an error. Returns False if already completed."""
        if self.future.done():
            return False
        self.future.set_exception(exc)
        return True

    def abandon(self, exc: BaseException) -> bool:
        """Fail the caller but keep the slot until the peer answers."""
        self.abandoned = True
        return self.fail(exc)


class PendingTable:
    """Bounded FIFO of pending commands.

    Replies are matched to the head only: the peer answers commands in the
    order it received them. Slots are taken before a command is written and
    given back when its entry leaves the queue.
    """

    def __init__(self, max_pending: int = 32) -> None:
        if max_pending < 1:
            raise ValueError(f"max_pending must be >= 1, got {max_pending}")
        self.max_pending = max_pending
        self._entries: deque[PendingCommand] = deque()
        self._slots = asyncio.Semaphore(max_pending)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    @property
    def head(self) -> PendingCommand | None:
        return self._entries[0] if self._entries else None

    async def acquire_slot(self) -> None:
        """Wait until another command may be queued."""
        await self._slots.acquire()

    def release_slot(self) -> None:
        """Give back a slot that was acquired but never used by push()."""
        self._slots.release()

    def push(self, entry: PendingCommand) -> None:
        """Append an entry. The caller must hold a slot."""
        self._entries.append(entry)

    def pop_head(self) -> PendingCommand | None:
        """Remove and return the oldest entry, freeing its slot."""
        if not self._entries:
            return None
        entry = self._entries.popleft()
        self._slots.release()
        return entry

    def fail_all(self, reason: str) -> int:
        """Fail every entry with ConnectionClosed and empty the queue.

        Returns:
            Number of entries that were still waiting (not abandoned)
        """
        failed = 0
        while self._entries:
            entry = self._entries.popleft()
            self._slots.release()
            if entry.fail(ConnectionClosed(reason)):
                failed += 1
        return failed
