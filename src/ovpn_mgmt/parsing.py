"""Parsers for reply bodies and notification payloads."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class StateInfo:
    """One line of ``state`` output (also the >STATE: payload).

    Format: time,state,description,local_ip,remote_ip,remote_port,
    local_address,local_port,local_ipv6. Trailing fields are optional and
    older peers omit them.
    """

    timestamp: int
    name: str
    description: str = ""
    local_ip: str = ""
    remote_ip: str = ""
    remote_port: int | None = None
    local_address: str = ""
    local_port: int | None = None
    local_ipv6: str = ""

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp)

    @property
    def connected(self) -> bool:
        return self.name == "CONNECTED"


@dataclass(frozen=True)
class ByteCount:
    """Traffic counters from >BYTECOUNT: or >BYTECOUNT_CLI:."""

    bytes_in: int
    bytes_out: int
    client_id: int | None = None


@dataclass(frozen=True)
class LogLine:
    """A real-time log line (>LOG:) or a line of ``log`` history."""

    timestamp: int
    flags: str
    message: str

    @property
    def time(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp)


def _optional_int(value: str) -> int | None:
    return int(value) if value else None


def parse_state(text: str) -> StateInfo:
    """Parse the first non-empty line of a state body.

    Raises:
        ValueError: If the line doesn't have at least time and state
    """
    line = next((ln.strip() for ln in text.splitlines() if ln.strip()), "")
    parts = line.split(",")
    if len(parts) < 2 or not parts[0].isdigit():
        raise ValueError(f"Invalid state line: {line!r}")
    parts += [""] * (9 - len(parts))
    return StateInfo(
        timestamp=int(parts[0]),
        name=parts[1],
        description=parts[2],
        local_ip=parts[3],
        remote_ip=parts[4],
        remote_port=_optional_int(parts[5]),
        local_address=parts[6],
        local_port=_optional_int(parts[7]),
        local_ipv6=parts[8],
    )


_KEY_VALUE = re.compile(r"([A-Za-z0-9_\-]+)=([^,\s]*)")


def parse_key_values(text: str) -> dict[str, str]:
    """Parse ``pid=123`` / ``nclients=0,bytesin=10`` style bodies."""
    return {key: value for key, value in _KEY_VALUE.findall(text)}


def parse_bytecount(payload: str) -> ByteCount:
    """Parse ``in,out`` (client mode) or ``cid,in,out`` (server mode).

    Raises:
        ValueError: On a malformed payload
    """
    parts = payload.split(",")
    if len(parts) == 2:
        return ByteCount(bytes_in=int(parts[0]), bytes_out=int(parts[1]))
    if len(parts) == 3:
        return ByteCount(
            bytes_in=int(parts[1]), bytes_out=int(parts[2]), client_id=int(parts[0])
        )
    raise ValueError(f"Invalid bytecount payload: {payload!r}")


def parse_log_line(payload: str) -> LogLine:
    """Parse ``time,flags,message``. The message may contain commas.

    Raises:
        ValueError: If the timestamp is missing
    """
    parts = payload.split(",", 2)
    if len(parts) < 3 or not parts[0].isdigit():
        raise ValueError(f"Invalid log line: {payload!r}")
    return LogLine(timestamp=int(parts[0]), flags=parts[1], message=parts[2])
