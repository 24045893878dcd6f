"""Tests for the pending table and response assembler."""

import asyncio

import pytest

from ovpn_mgmt.assembler import ResponseAssembler
from ovpn_mgmt.errors import ConnectionClosed, MalformedReply
from ovpn_mgmt.pending import PendingCommand, PendingTable
from ovpn_mgmt.protocol import LineKind, ReceiveInfo, ReplyShape, ReplyStatus


def make_entry(command: str, expect: ReplyShape = ReplyShape.ANY) -> PendingCommand:
    return PendingCommand(
        command=command,
        future=asyncio.get_running_loop().create_future(),
        expect=expect,
    )


async def push(table: PendingTable, entry: PendingCommand) -> PendingCommand:
    await table.acquire_slot()
    table.push(entry)
    return entry


class TestPendingCommand:
    """Exactly-once completion."""

    @pytest.mark.asyncio
    async def test_resolve_once(self):
        entry = make_entry("pid")
        info = ReceiveInfo(status=ReplyStatus.SUCCESS, body="pid=1")

        assert entry.resolve(info) is True
        assert entry.resolve(info) is False
        assert entry.fail(RuntimeError("late")) is False
        assert entry.future.result() is info

    @pytest.mark.asyncio
    async def test_abandon_marks_and_fails(self):
        entry = make_entry("pid")

        assert entry.abandon(RuntimeError("timeout")) is True

        assert entry.abandoned
        assert entry.done
        with pytest.raises(RuntimeError):
            entry.future.result()


    @pytest.mark.asyncio
    async def test_overdue_measures_past_deadline(self):
        entry = make_entry("pid")
        assert entry.overdue(asyncio.get_running_loop().time()) is None

        entry.deadline = 10.0

        assert entry.overdue(12.5) == 2.5
        assert entry.overdue(9.0) == 0.0


class TestPendingTable:
    """FIFO order and slot accounting."""

    @pytest.mark.asyncio
    async def test_fifo(self):
        table = PendingTable()
        a = await push(table, make_entry("a"))
        b = await push(table, make_entry("b"))

        assert table.head is a
        assert table.pop_head() is a
        assert table.pop_head() is b
        assert table.pop_head() is None

    @pytest.mark.asyncio
    async def test_slots_released_on_pop(self):
        table = PendingTable(max_pending=1)
        await push(table, make_entry("a"))

        waiter = asyncio.create_task(table.acquire_slot())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        table.pop_head()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_fail_all_skips_completed_entries(self):
        table = PendingTable()
        live = await push(table, make_entry("a"))
        abandoned = await push(table, make_entry("b"))
        abandoned.abandon(RuntimeError("timeout"))

        assert table.fail_all("gone") == 1

        assert len(table) == 0
        with pytest.raises(ConnectionClosed):
            live.future.result()

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            PendingTable(max_pending=0)


class TestResponseAssembler:
    """Reply assembly against the head entry."""

    @pytest.mark.asyncio
    async def test_single_line(self):
        table = PendingTable()
        entry = await push(table, make_entry("echo all"))
        assembler = ResponseAssembler(table)

        assembler.feed(LineKind.STATUS, "SUCCESS: real-time echo messages on")

        info = entry.future.result()
        assert info == ReceiveInfo(
            status=ReplyStatus.SUCCESS,
            body="real-time echo messages on",
            command="echo all",
            lines=("real-time echo messages on",),
        )
        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_block(self):
        table = PendingTable()
        entry = await push(table, make_entry("status"))
        assembler = ResponseAssembler(table)

        assembler.feed(LineKind.CONTENT, "a")
        assert assembler.accumulating
        assert not entry.done
        assembler.feed(LineKind.CONTENT, "b")
        assembler.feed(LineKind.TERMINATOR, "END")

        assert entry.future.result().body == "a\nb"
        assert not assembler.accumulating

    @pytest.mark.asyncio
    async def test_abandoned_head_consumes_reply(self):
        table = PendingTable()
        stale = await push(table, make_entry("pid"))
        stale.abandon(RuntimeError("timeout"))
        fresh = await push(table, make_entry("hold"))
        assembler = ResponseAssembler(table)

        assembler.feed(LineKind.STATUS, "SUCCESS: pid=1")
        assert not fresh.done

        assembler.feed(LineKind.STATUS, "SUCCESS: hold=0")
        assert fresh.future.result().body == "hold=0"

    @pytest.mark.asyncio
    async def test_shape_mismatch(self):
        table = PendingTable()
        single = await push(table, make_entry("pid", ReplyShape.SINGLE))
        assembler = ResponseAssembler(table)

        assembler.feed(LineKind.CONTENT, "x")
        assert not single.done
        assembler.feed(LineKind.TERMINATOR, "END")

        with pytest.raises(MalformedReply) as exc_info:
            single.future.result()
        assert "expected single reply, got block" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unmatched_reply_ignored(self):
        table = PendingTable()
        assembler = ResponseAssembler(table)

        assembler.feed(LineKind.STATUS, "SUCCESS: stray")
        assembler.feed(LineKind.TERMINATOR, "END")

        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_notification_kind_rejected(self):
        assembler = ResponseAssembler(PendingTable())

        with pytest.raises(ValueError):
            assembler.feed(LineKind.NOTIFICATION, ">LOG:x")
