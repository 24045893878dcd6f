"""Exception hierarchy for management interface failures."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ovpn_mgmt.protocol import ReceiveInfo


class ManagementError(Exception):
    """Base class for every failure raised by this package."""


class ProtocolError(ManagementError):
    """Peer answered a command with an error-tagged reply.

    Raised by the caller layer (``ReceiveInfo.raise_for_status``), never by
    the stream itself. The reply is kept so callers can inspect the body.
    """

    def __init__(self, info: ReceiveInfo) -> None:
        super().__init__(f"{info.command!r} failed: {info.body}")
        self.info = info

    @property
    def body(self) -> str:
        return self.info.body


class CommandTimeout(ManagementError, TimeoutError):
    """No reply arrived before the command's deadline."""

    def __init__(self, command: str, timeout: float | None) -> None:
        super().__init__(f"{command!r} timed out after {timeout}s")
        self.command = command
        self.timeout = timeout


class CommandCancelled(ManagementError):
    """The caller cancelled the command before its reply arrived."""

    def __init__(self, command: str) -> None:
        super().__init__(f"{command!r} cancelled")
        self.command = command


class ConnectionClosed(ManagementError, ConnectionError):
    """Stream is closed. Terminal: the stream must be recreated."""


class MalformedReply(ManagementError):
    """Reply lines did not match the shape the command expected."""

    def __init__(self, command: str, reason: str) -> None:
        super().__init__(f"{command!r}: {reason}")
        self.command = command
        self.reason = reason
