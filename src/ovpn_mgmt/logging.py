"""Console output with Rich formatting, plus structlog configuration.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Core log functions (log, info, warn, error)
3. Domain helpers used by the CLI (reply, notification, connected, ...)
4. Structlog configuration (configure, get_structlog)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from ovpn_mgmt.config import Config
    from ovpn_mgmt.protocol import Notification, ReceiveInfo

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    NOTIFY = "[magenta]»[/]"
    CONNECTED = "[green]⬤[/]"
    DISCONNECTED = "[red]⬤[/]"


_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}

# Notification categories worth a color of their own
_CATEGORY_STYLES = {
    "STATE": "cyan",
    "LOG": "dim",
    "BYTECOUNT": "green",
    "BYTECOUNT_CLI": "green",
    "FATAL": "bold red",
    "HOLD": "yellow",
    "PASSWORD": "yellow",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def connected(target: str, banner: str | None) -> None:
    """Log management connection established."""
    suffix = f" [dim]({escape(banner)})[/]" if banner else ""
    info(f"Connected to [cyan]{escape(target)}[/]{suffix}", Icon.CONNECTED)


def disconnected(reason: str) -> None:
    """Log management connection lost."""
    warn(f"Disconnected: {escape(reason)}", Icon.DISCONNECTED)


def reply_failed(command: str, body: str) -> None:
    """Log an error-tagged reply."""
    error(f"[bold]{escape(command)}[/] failed: {escape(body)}", Icon.FAIL)


def command_failed(command: str, reason: str) -> None:
    """Log a command that got no usable reply (timeout, closed, ...)."""
    error(f"[bold]{escape(command)}[/]: {escape(reason)}", Icon.FAIL)


def notification(n: Notification) -> None:
    """Print one notification line."""
    tag = n.tag or n.category.value
    style = _CATEGORY_STYLES.get(tag, "bright_blue")
    ts = datetime.fromtimestamp(n.received_at).strftime("%H:%M:%S")
    body = escape(n.payload)
    if len(n.lines) > 1:
        body += f" [dim](+{len(n.lines) - 1} lines)[/]"
    _console.print(f"[dim]{ts}[/] {Icon.NOTIFY} [{style}]{tag}[/] {body}")


def reply(r: ReceiveInfo) -> None:
    """Print a reply body verbatim (no markup, no timestamp)."""
    _console.print(r.body, markup=False)


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{escape(path)}[/]", Icon.OK)


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config, level: int = logging.INFO) -> None:
    """Configure structlog to write JSON lines to the rotating log file.

    Args:
        config: Application config with paths and rotation settings
        level: Minimum stdlib level written to the file
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.log_max_bytes,
        backupCount=config.logging.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(level)
    stdlib_root.handlers.clear()

    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("client"),
                structlog.processors.format_exc_info,
            ],
        )
    )
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("client"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_structlog() -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for JSON file output."""
    return structlog.get_logger()
