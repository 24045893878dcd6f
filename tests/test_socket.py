"""Tests for connecting over real sockets: greeting, password, from_config."""

import asyncio

import pytest
import pytest_asyncio

from ovpn_mgmt.config import Config
from ovpn_mgmt.errors import ConnectionClosed
from ovpn_mgmt.protocol import NotificationCategory
from ovpn_mgmt.stream import MessageStream
from tests.conftest import UnixPeer, wait_until

REPLIES = {
    "pid": ["SUCCESS: pid=4242"],
    "hold": [],  # never answered
    "state": ["1700000000,CONNECTED,SUCCESS,10.8.0.2,203.0.113.5,1194,,", "END"],
}


@pytest_asyncio.fixture
async def peer(short_tmp_path):
    server = UnixPeer(short_tmp_path / "mgmt.sock", REPLIES)
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def locked_peer(short_tmp_path):
    server = UnixPeer(short_tmp_path / "mgmt.sock", REPLIES, password="hunter2")
    await server.start()
    yield server
    await server.stop()


class TestConnect:
    @pytest.mark.asyncio
    async def test_banner_and_commands(self, peer):
        async with await MessageStream.connect(socket_path=peer.socket_path) as stream:
            info = await stream.send("pid")

            assert info.body == "pid=4242"
            assert stream.banner == UnixPeer.BANNER.removeprefix(">INFO:")
        assert peer.received == ["pid"]

    @pytest.mark.asyncio
    async def test_missing_socket(self, short_tmp_path):
        with pytest.raises(FileNotFoundError):
            await MessageStream.connect(socket_path=short_tmp_path / "nope.sock")

    @pytest.mark.asyncio
    async def test_unknown_command_returns_error_reply(self, peer):
        async with await MessageStream.connect(socket_path=peer.socket_path) as stream:
            info = await stream.send("bogus")

        assert not info.ok
        assert info.body.startswith("unknown command")

    @pytest.mark.asyncio
    async def test_notifications_from_peer(self, peer):
        seen = []
        async with await MessageStream.connect(socket_path=peer.socket_path) as stream:
            stream.subscribe(seen.append, categories=[NotificationCategory.STATE])
            await wait_until(lambda: len(peer.writers) == 1)

            await peer.push(">STATE:1700000000,CONNECTED,SUCCESS,10.8.0.2,203.0.113.5,1194,,")
            await wait_until(lambda: len(seen) == 1)

            # Replies still line up after a notification
            assert (await stream.send("pid")).body == "pid=4242"

        assert seen[0].payload.startswith("1700000000,CONNECTED")

    @pytest.mark.asyncio
    async def test_peer_shutdown_closes_stream(self, peer):
        stream = await MessageStream.connect(socket_path=peer.socket_path)
        pending = asyncio.create_task(stream.send("hold", timeout=None))
        await wait_until(lambda: "hold" in peer.received)

        await peer.stop()

        with pytest.raises(ConnectionClosed):
            await asyncio.wait_for(pending, timeout=2.0)
        assert stream.closed
        await stream.close()


class TestPassword:
    @pytest.mark.asyncio
    async def test_password_accepted(self, locked_peer):
        stream = await MessageStream.connect(
            socket_path=locked_peer.socket_path, password="hunter2"
        )
        try:
            assert (await stream.send("pid")).body == "pid=4242"
            assert stream.banner is not None
        finally:
            await stream.close()

    @pytest.mark.asyncio
    async def test_password_rejected(self, locked_peer):
        with pytest.raises(ConnectionClosed, match="Password rejected"):
            await MessageStream.connect(socket_path=locked_peer.socket_path, password="wrong")

    @pytest.mark.asyncio
    async def test_password_missing(self, locked_peer):
        with pytest.raises(ConnectionClosed, match="requires a management password"):
            await MessageStream.connect(socket_path=locked_peer.socket_path)


@pytest.mark.asyncio
async def test_from_config(locked_peer):
    config = Config()
    config.connection.socket_path = str(locked_peer.socket_path)
    config.connection.password = "hunter2"
    config.commands.default_timeout = 0  # no deadline

    stream = await MessageStream.from_config(config)
    try:
        assert stream.default_timeout is None
        assert (await stream.send("state")).lines[0].startswith("1700000000")
    finally:
        await stream.close()


@pytest.mark.asyncio
async def test_tcp_connect():
    received = []

    async def handle(reader, writer):
        writer.write(b">INFO:tcp peer\r\n")
        await writer.drain()
        line = await reader.readline()
        received.append(line.decode().strip())
        writer.write(b"SUCCESS: pid=7\r\n")
        await writer.drain()
        await reader.read()
        writer.close()

    server = await asyncio.start_server(handle, host="127.0.0.1", port=0)
    port = server.sockets[0].getsockname()[1]
    try:
        async with await MessageStream.connect(host="127.0.0.1", port=port) as stream:
            assert (await stream.send("pid")).body == "pid=7"
            assert stream.banner == "tcp peer"
        assert received == ["pid"]
    finally:
        server.close()
        await server.wait_closed()
