"""Line classification and value types for the management protocol.

Wire format (OpenVPN style):
- Commands: one line, written verbatim
- Single-line replies: ``SUCCESS: ...`` or ``ERROR: ...``
- Block replies: any number of lines followed by a bare ``END``
- Notifications: ``>CATEGORY:payload``, pushed at any time, even mid-block
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum

from ovpn_mgmt.config import ProtocolConfig
from ovpn_mgmt.errors import ProtocolError


class ReplyStatus(Enum):
    """Status flag of a completed reply."""

    SUCCESS = "success"
    ERROR = "error"


class ReplyShape(Enum):
    """Reply form a command expects.

    ANY accepts either form. SINGLE and BLOCK let the stream detect replies
    that arrive out of step with the commands that were written.
    """

    ANY = "any"
    SINGLE = "single"
    BLOCK = "block"


class LineKind(Enum):
    """Classification of one incoming line."""

    NOTIFICATION = "notification"
    TERMINATOR = "terminator"
    STATUS = "status"
    CONTENT = "content"


class NotificationCategory(Enum):
    """Known notification categories (the text between ``>`` and ``:``)."""

    BYTECOUNT = "BYTECOUNT"
    BYTECOUNT_CLI = "BYTECOUNT_CLI"
    CLIENT = "CLIENT"
    ECHO = "ECHO"
    FATAL = "FATAL"
    HOLD = "HOLD"
    INFO = "INFO"
    INFOMSG = "INFOMSG"
    LOG = "LOG"
    NEED_OK = "NEED-OK"
    NEED_STR = "NEED-STR"
    PASSWORD = "PASSWORD"
    PKCS11ID_COUNT = "PKCS11ID-COUNT"
    PK_SIGN = "PK_SIGN"
    PROXY = "PROXY"
    REMOTE = "REMOTE"
    RSA_SIGN = "RSA_SIGN"
    STATE = "STATE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_tag(cls, tag: str) -> NotificationCategory:
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ReceiveInfo:
    """Outcome of a completed command: status plus raw body."""

    status: ReplyStatus
    body: str
    command: str = ""
    lines: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.SUCCESS

    def raise_for_status(self) -> ReceiveInfo:
        """Raise ProtocolError if the peer rejected the command."""
        if self.status is ReplyStatus.ERROR:
            raise ProtocolError(self)
        return self


@dataclass(frozen=True)
class Notification:
    """One asynchronous notification (a line, or a grouped client block)."""

    category: NotificationCategory
    payload: str
    tag: str = ""
    lines: tuple[str, ...] = ()
    received_at: float = field(default_factory=time.time)


def classify(line: str, accumulating: bool, conventions: ProtocolConfig) -> LineKind:
    """Decide where an incoming line belongs.

    The terminator check comes first so a bare terminator is never mistaken
    for anything else. Marked lines are notifications even in the middle of
    a block reply.
    """
    if line == conventions.terminator:
        return LineKind.TERMINATOR
    if line.startswith(conventions.notification_marker):
        return LineKind.NOTIFICATION
    if accumulating:
        return LineKind.CONTENT
    if line.startswith(conventions.success_prefix) or line.startswith(conventions.error_prefix):
        return LineKind.STATUS
    return LineKind.CONTENT


def parse_status_line(line: str, conventions: ProtocolConfig) -> tuple[ReplyStatus, str]:
    """Split ``SUCCESS: text`` / ``ERROR: text`` into status and body."""
    if line.startswith(conventions.error_prefix):
        return ReplyStatus.ERROR, line[len(conventions.error_prefix) :].lstrip()
    if line.startswith(conventions.success_prefix):
        return ReplyStatus.SUCCESS, line[len(conventions.success_prefix) :].lstrip()
    raise ValueError(f"Not a status line: {line!r}")


def split_notification(line: str, conventions: ProtocolConfig) -> tuple[str, str]:
    """Split ``>TAG:payload`` into its tag and payload."""
    text = line[len(conventions.notification_marker) :]
    tag, sep, payload = text.partition(":")
    if not sep:
        # e.g. a bare ">REMOTE" without payload
        return text, ""
    return tag, payload


# Client events followed by >CLIENT:ENV,... lines up to >CLIENT:ENV,END
_CLIENT_ENV_EVENTS = {"CONNECT", "REAUTH", "ESTABLISHED", "DISCONNECT", "CR_RESPONSE"}


class NotificationParser:
    """Turns marked lines into Notification values.

    Most notifications are a single line. Server-mode client events carry an
    environment block, which is grouped into one Notification.
    """

    def __init__(self, conventions: ProtocolConfig | None = None) -> None:
        self.conventions = conventions or ProtocolConfig()
        self._group: list[str] | None = None
        self._group_payload = ""

    @property
    def grouping(self) -> bool:
        return self._group is not None

    def feed(self, line: str) -> list[Notification]:
        """Consume one marked line and return the notifications it completes.

        Usually zero or one. Two when a line interrupts an unfinished client
        group: the partial group is flushed first, then the new line is
        handled on its own.
        """
        tag, payload = split_notification(line, self.conventions)
        completed: list[Notification] = []

        if self._group is not None:
            if tag == "CLIENT" and payload.startswith("ENV,"):
                self._group.append(line)
                if payload == "ENV,END":
                    completed.append(self._flush_group())
                return completed
            completed.append(self._flush_group())

        if tag == "CLIENT" and payload.split(",", 1)[0] in _CLIENT_ENV_EVENTS:
            self._group = [line]
            self._group_payload = payload
            return completed

        completed.append(
            Notification(
                category=NotificationCategory.from_tag(tag),
                payload=payload,
                tag=tag,
                lines=(line,),
            )
        )
        return completed

    def flush(self) -> list[Notification]:
        """Emit a partial client group, if any (used at end of stream)."""
        if self._group is None:
            return []
        return [self._flush_group()]

    def _flush_group(self) -> Notification:
        lines = tuple(self._group or ())
        payload = self._group_payload
        self._group = None
        self._group_payload = ""
        return Notification(
            category=NotificationCategory.CLIENT,
            payload=payload,
            tag="CLIENT",
            lines=lines,
        )
