"""Async client for the OpenVPN management interface."""

from ovpn_mgmt.errors import (
    CommandCancelled,
    CommandTimeout,
    ConnectionClosed,
    MalformedReply,
    ManagementError,
    ProtocolError,
)
from ovpn_mgmt.protocol import (
    Notification,
    NotificationCategory,
    ReceiveInfo,
    ReplyShape,
    ReplyStatus,
)
from ovpn_mgmt.stream import MessageStream

__all__ = [
    "CommandCancelled",
    "CommandTimeout",
    "ConnectionClosed",
    "MalformedReply",
    "ManagementError",
    "MessageStream",
    "Notification",
    "NotificationCategory",
    "ProtocolError",
    "ReceiveInfo",
    "ReplyShape",
    "ReplyStatus",
]
