"""Tests for the line reader."""

import asyncio

import pytest

from ovpn_mgmt.errors import ConnectionClosed
from ovpn_mgmt.reader import LineReader


@pytest.mark.asyncio
async def test_yields_lines_without_line_endings():
    reader = asyncio.StreamReader()
    reader.feed_data(b"SUCCESS: one\r\nEND\n>LOG:x\r\n")
    reader.feed_eof()

    lines = [line async for line in LineReader(reader)]

    assert lines == ["SUCCESS: one", "END", ">LOG:x"]


@pytest.mark.asyncio
async def test_partial_last_line_returned_at_eof():
    reader = asyncio.StreamReader()
    reader.feed_data(b"first\nunterminated")
    reader.feed_eof()

    lines = [line async for line in LineReader(reader)]

    assert lines == ["first", "unterminated"]


@pytest.mark.asyncio
async def test_invalid_utf8_replaced():
    reader = asyncio.StreamReader()
    reader.feed_data(b"caf\xe9\n")
    reader.feed_eof()

    assert await LineReader(reader).readline() == "caf\ufffd"


@pytest.mark.asyncio
async def test_over_long_line_raises_connection_closed():
    reader = asyncio.StreamReader(limit=16)
    reader.feed_data(b"x" * 64 + b"\n")

    with pytest.raises(ConnectionClosed):
        await LineReader(reader).readline()


@pytest.mark.asyncio
async def test_read_is_cancellable():
    reader = asyncio.StreamReader()
    task = asyncio.create_task(LineReader(reader).readline())
    await asyncio.sleep(0.01)

    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_greeting_password_prompt_without_newline():
    reader = asyncio.StreamReader()
    reader.feed_data(b"ENTER PASSWORD:")

    greeting = await asyncio.wait_for(
        LineReader(reader).read_greeting("ENTER PASSWORD:"), timeout=1.0
    )

    assert greeting == "ENTER PASSWORD:"


@pytest.mark.asyncio
async def test_greeting_regular_line():
    reader = asyncio.StreamReader()
    reader.feed_data(b">INFO:OpenVPN Management Interface Version 5\r\n")

    greeting = await LineReader(reader).read_greeting("ENTER PASSWORD:")

    assert greeting == ">INFO:OpenVPN Management Interface Version 5"


@pytest.mark.asyncio
async def test_greeting_eof():
    reader = asyncio.StreamReader()
    reader.feed_eof()

    with pytest.raises(ConnectionClosed):
        await LineReader(reader).read_greeting("ENTER PASSWORD:")
