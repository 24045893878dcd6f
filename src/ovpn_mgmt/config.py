"""Configuration system for ovpn-mgmt."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

VALID_OVERFLOW_POLICIES = {"drop_newest", "drop_oldest"}


@dataclass
class ConnectionConfig:
    """Where and how to reach the management interface.

    When socket_path is set it wins over host/port (``--management
    /path/to/sock unix``). Otherwise a TCP connection to host:port is used.
    """

    socket_path: str = ""  # Empty = use TCP
    host: str = "127.0.0.1"
    port: int = 7505
    password: str = ""  # Management password, if the peer asks for one
    connect_timeout: float = 5.0  # Seconds to wait for connect + greeting
    encoding: str = "utf-8"
    line_limit: int = 64 * 1024  # Max bytes per protocol line


@dataclass
class CommandsConfig:
    """Command submission defaults."""

    default_timeout: float = 20.0  # Seconds; 0 disables the deadline
    max_pending: int = 32  # Commands queued on the wire, abandoned ones included


@dataclass
class NotificationsConfig:
    """Asynchronous notification fan-out."""

    queue_size: int = 256  # Per-observer buffered notifications
    overflow: str = "drop_newest"  # "drop_newest" or "drop_oldest"


@dataclass
class ProtocolConfig:
    """Line conventions of the peer.

    Defaults match the OpenVPN management interface. They stay configurable
    because other peers speaking the same style of protocol differ in detail.
    """

    notification_marker: str = ">"
    terminator: str = "END"
    success_prefix: str = "SUCCESS:"
    error_prefix: str = "ERROR:"
    password_prompt: str = "ENTER PASSWORD:"  # Sent without a trailing newline


@dataclass
class LoggingConfig:
    """Log file rotation."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "ovpn-mgmt"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "ovpn-mgmt"

    @property
    def log_path(self) -> Path:
        """Client log path."""
        return self.state_dir / "client.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        sections = [
            "connection",
            "commands",
            "notifications",
            "protocol",
            "logging",
        ]
        for name in sections:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        log_data = data.get("logging", {})
        log_defaults = defaults.logging

        return cls(
            connection=_load_connection_config(data.get("connection", {})),
            commands=_load_commands_config(data.get("commands", {})),
            notifications=_load_notifications_config(data.get("notifications", {})),
            protocol=_load_protocol_config(data.get("protocol", {})),
            logging=LoggingConfig(
                log_max_bytes=log_data.get("log_max_bytes", log_defaults.log_max_bytes),
                log_backup_count=log_data.get("log_backup_count", log_defaults.log_backup_count),
            ),
        )


def _load_connection_config(data: dict) -> ConnectionConfig:
    """Load connection config from TOML data."""
    d = ConnectionConfig()
    port = data.get("port", d.port)
    connect_timeout = data.get("connect_timeout", d.connect_timeout)
    line_limit = data.get("line_limit", d.line_limit)

    if not 0 < port < 65536:
        raise ValueError(f"port must be in 1..65535, got {port}")
    if connect_timeout <= 0:
        raise ValueError(f"connect_timeout must be > 0, got {connect_timeout}")
    if line_limit < 256:
        raise ValueError(f"line_limit must be >= 256, got {line_limit}")

    return ConnectionConfig(
        socket_path=data.get("socket_path", d.socket_path),
        host=data.get("host", d.host),
        port=port,
        password=data.get("password", d.password),
        connect_timeout=connect_timeout,
        encoding=data.get("encoding", d.encoding),
        line_limit=line_limit,
    )


def _load_commands_config(data: dict) -> CommandsConfig:
    """Load command defaults from TOML data."""
    d = CommandsConfig()
    default_timeout = data.get("default_timeout", d.default_timeout)
    max_pending = data.get("max_pending", d.max_pending)

    if default_timeout < 0:
        raise ValueError(f"default_timeout must be >= 0, got {default_timeout}")
    if max_pending < 1:
        raise ValueError(f"max_pending must be >= 1, got {max_pending}")

    return CommandsConfig(default_timeout=default_timeout, max_pending=max_pending)


def _load_notifications_config(data: dict) -> NotificationsConfig:
    """Load notification fan-out config from TOML data."""
    d = NotificationsConfig()
    queue_size = data.get("queue_size", d.queue_size)
    overflow = data.get("overflow", d.overflow)

    if queue_size < 1:
        raise ValueError(f"queue_size must be >= 1, got {queue_size}")
    if overflow not in VALID_OVERFLOW_POLICIES:
        raise ValueError(
            f"Invalid overflow: {overflow!r}. Must be one of {VALID_OVERFLOW_POLICIES}"
        )

    return NotificationsConfig(queue_size=queue_size, overflow=overflow)


def _load_protocol_config(data: dict) -> ProtocolConfig:
    """Load protocol conventions from TOML data."""
    d = ProtocolConfig()
    config = ProtocolConfig(
        notification_marker=data.get("notification_marker", d.notification_marker),
        terminator=data.get("terminator", d.terminator),
        success_prefix=data.get("success_prefix", d.success_prefix),
        error_prefix=data.get("error_prefix", d.error_prefix),
        password_prompt=data.get("password_prompt", d.password_prompt),
    )
    for f in fields(config):
        if not getattr(config, f.name):
            raise ValueError(f"protocol.{f.name} must not be empty")
    return config
