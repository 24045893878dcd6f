"""Typed command wrappers over MessageStream.send()."""

from __future__ import annotations

import asyncio
from enum import Enum

from ovpn_mgmt.parsing import StateInfo, parse_key_values, parse_state
from ovpn_mgmt.protocol import ReceiveInfo, ReplyShape
from ovpn_mgmt.stream import MessageStream


class AuthRetryMode(Enum):
    """``auth-retry`` modes."""

    NONE = "none"
    INTERACT = "interact"
    NOINTERACT = "nointeract"


class HoldMode(Enum):
    """``hold`` arguments."""

    ON = "on"
    OFF = "off"
    RELEASE = "release"


class ManagerSignal(Enum):
    """Signals the peer accepts through ``signal``."""

    HUP = "SIGHUP"
    TERM = "SIGTERM"
    USR1 = "SIGUSR1"
    USR2 = "SIGUSR2"


def escape(value: str) -> str:
    """Quote a command argument.

    Wraps in double quotes and backslash-escapes ``\\`` and ``"``. Newlines
    can't be carried by a line protocol at all and are rejected.
    """
    if "\n" in value or "\r" in value:
        raise ValueError("Arguments cannot contain newlines")
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _on_off(on: bool) -> str:
    return "on" if on else "off"


class ManagerCommands:
    """Command façade: builds command text and calls send().

    Every method takes ``timeout`` (seconds, default_timeout when None) and
    ``cancel`` (asyncio.Event) and returns the raw ReceiveInfo, except the
    getters that parse their reply and raise ProtocolError on an error
    status.
    """

    def __init__(self, stream: MessageStream, default_timeout: float | None = 20.0) -> None:
        self.stream = stream
        self.default_timeout = default_timeout

    async def _send(
        self,
        command: str,
        timeout: float | None,
        cancel: asyncio.Event | None,
        expect: ReplyShape = ReplyShape.ANY,
    ) -> ReceiveInfo:
        return await self.stream.send(
            command,
            timeout=self.default_timeout if timeout is None else timeout,
            cancel=cancel,
            expect=expect,
        )

    async def send(
        self, command: str, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Send a raw command line."""
        return await self._send(command, timeout, cancel)

    async def auth_retry(
        self, mode: AuthRetryMode, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Set how authentication failures are retried."""
        return await self._send(f"auth-retry {mode.value}", timeout, cancel, ReplyShape.SINGLE)

    async def bytecount(
        self, seconds: int, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Push >BYTECOUNT: every ``seconds`` seconds (0 = off)."""
        if seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {seconds}")
        return await self._send(f"bytecount {seconds}", timeout, cancel, ReplyShape.SINGLE)

    async def echo(
        self,
        arg: bool | int | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        """Echo buffer: None = all, bool = real-time on/off, int = last N lines."""
        if arg is None:
            return await self._send("echo all", timeout, cancel)
        if isinstance(arg, bool):
            return await self._send(f"echo {_on_off(arg)}", timeout, cancel, ReplyShape.SINGLE)
        return await self._send(f"echo {arg}", timeout, cancel)

    async def forget_passwords(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Forget passwords entered so far."""
        return await self._send("forget-passwords", timeout, cancel, ReplyShape.SINGLE)

    async def help(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Command summary."""
        return await self._send("help", timeout, cancel, ReplyShape.BLOCK)

    async def hold(
        self,
        mode: HoldMode | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        """Show (mode None) or set the hold flag, or release a hold."""
        command = "hold" if mode is None else f"hold {mode.value}"
        return await self._send(command, timeout, cancel, ReplyShape.SINGLE)

    async def hold_release(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        return await self.hold(HoldMode.RELEASE, timeout, cancel)

    async def load_stats(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> dict[str, str]:
        """Global server load statistics as key/value pairs."""
        info = await self._send("load-stats", timeout, cancel, ReplyShape.SINGLE)
        return parse_key_values(info.raise_for_status().body)

    async def log(
        self,
        arg: bool | int | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        """Log history: None = all, bool = real-time on/off, int = last N lines."""
        if arg is None:
            return await self._send("log all", timeout, cancel)
        if isinstance(arg, bool):
            return await self._send(f"log {_on_off(arg)}", timeout, cancel, ReplyShape.SINGLE)
        return await self._send(f"log {arg}", timeout, cancel)

    async def mute(
        self,
        level: int | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        """Show (level None) or set the log mute level."""
        command = "mute" if level is None else f"mute {level}"
        return await self._send(command, timeout, cancel, ReplyShape.SINGLE)

    async def net(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Network info and routing table (Windows peers only)."""
        return await self._send("net", timeout, cancel)

    async def username(
        self,
        value: str,
        auth_type: str = "Auth",
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        command = f"username {escape(auth_type)} {escape(value)}"
        return await self._send(command, timeout, cancel, ReplyShape.SINGLE)

    async def password(
        self,
        value: str,
        auth_type: str = "Auth",
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        command = f"password {escape(auth_type)} {escape(value)}"
        return await self._send(command, timeout, cancel, ReplyShape.SINGLE)

    async def get_state(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> StateInfo:
        """Current connection state.

        Raises:
            ProtocolError: If the peer rejects the command
        """
        info = await self._send("state", timeout, cancel, ReplyShape.BLOCK)
        return parse_state(info.raise_for_status().body)

    async def state_stream(
        self, on: bool, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        """Turn real-time >STATE: notifications on or off."""
        return await self._send(f"state {_on_off(on)}", timeout, cancel, ReplyShape.SINGLE)

    async def get_pid(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> int:
        """Peer process id, or -1 if the reply has no usable pid.

        Raises:
            ProtocolError: If the peer rejects the command
        """
        info = await self._send("pid", timeout, cancel, ReplyShape.SINGLE)
        value = parse_key_values(info.raise_for_status().body).get("pid", "")
        try:
            return int(value)
        except ValueError:
            return -1

    async def signal(
        self, sig: ManagerSignal, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        return await self._send(f"signal {sig.value}", timeout, cancel, ReplyShape.SINGLE)

    async def status(
        self,
        version: int | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ReceiveInfo:
        """Connection status report, optionally in format ``version`` (1-3)."""
        command = "status" if version is None else f"status {version}"
        return await self._send(command, timeout, cancel, ReplyShape.BLOCK)

    async def version(
        self, timeout: float | None = None, cancel: asyncio.Event | None = None
    ) -> ReceiveInfo:
        return await self._send("version", timeout, cancel, ReplyShape.BLOCK)
