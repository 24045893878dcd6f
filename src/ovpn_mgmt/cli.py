"""CLI commands for ovpn-mgmt."""

from __future__ import annotations

from pathlib import Path

import click

LOCAL_HOSTS = {"127.0.0.1", "localhost", "::1"}


def _run(coro):
    """Run a coroutine, turning connection problems into a clean exit."""
    import asyncio

    from ovpn_mgmt import logging as console
    from ovpn_mgmt.errors import ManagementError

    try:
        return asyncio.run(coro)
    except FileNotFoundError as e:
        console.error(str(e), console.Icon.FAIL)
        raise SystemExit(1) from e
    except (ManagementError, OSError, TimeoutError) as e:
        console.error(f"{type(e).__name__}: {e}", console.Icon.FAIL)
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        raise SystemExit(0) from None


@click.group()
@click.version_option(package_name="ovpn-mgmt")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/ovpn-mgmt/config.toml)",
)
@click.option("--socket", "socket_path", default=None, help="Unix socket of the interface")
@click.option("--host", default=None, help="TCP host of the interface")
@click.option("--port", type=int, default=None, help="TCP port of the interface")
@click.option("--timeout", type=float, default=None, help="Per-command timeout in seconds")
@click.option("--log", "log_enabled", is_flag=True, help="Write JSON logs to the state directory")
@click.pass_context
def main(
    ctx,
    config_path: Path | None,
    socket_path: str | None,
    host: str | None,
    port: int | None,
    timeout: float | None,
    log_enabled: bool,
) -> None:
    """Talk to an OpenVPN management interface."""
    from ovpn_mgmt.config import Config

    ctx.ensure_object(dict)
    try:
        config = Config.load(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    if socket_path is not None:
        config.connection.socket_path = socket_path
    if host is not None:
        config.connection.host = host
        config.connection.socket_path = ""
    if port is not None:
        config.connection.port = port
    if timeout is not None:
        config.commands.default_timeout = timeout

    if log_enabled:
        from ovpn_mgmt.logging import configure

        configure(config)

    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path


@main.command()
@click.argument("command", nargs=-1, required=True)
@click.pass_context
def send(ctx, command: tuple[str, ...]) -> None:
    """Send a raw command and print the reply body."""
    from ovpn_mgmt import logging as console
    from ovpn_mgmt.stream import MessageStream

    config = ctx.obj["config"]
    text = " ".join(command)

    async def run():
        async with await MessageStream.from_config(config) as stream:
            return await stream.send(text)

    info = _run(run())
    if not info.ok:
        console.reply_failed(text, info.body)
        raise SystemExit(1)
    click.echo(info.body)


@main.command()
@click.pass_context
def state(ctx) -> None:
    """Show the current connection state."""
    from ovpn_mgmt.commands import ManagerCommands
    from ovpn_mgmt.stream import MessageStream

    config = ctx.obj["config"]

    async def run():
        async with await MessageStream.from_config(config) as stream:
            return await ManagerCommands(stream, config.commands.default_timeout or None).get_state()

    info = _run(run())
    click.echo(f"State: {info.name}")
    click.echo(f"Since: {info.time}")
    if info.description:
        click.echo(f"Description: {info.description}")
    if info.local_ip:
        click.echo(f"Local IP: {info.local_ip}")
    if info.remote_ip:
        remote = info.remote_ip
        if info.remote_port is not None:
            remote += f":{info.remote_port}"
        click.echo(f"Remote: {remote}")


@main.command()
@click.pass_context
def pid(ctx) -> None:
    """Show the peer's process id (and name, when it runs locally)."""
    import psutil

    from ovpn_mgmt.commands import ManagerCommands
    from ovpn_mgmt.stream import MessageStream

    config = ctx.obj["config"]

    async def run() -> int:
        async with await MessageStream.from_config(config) as stream:
            return await ManagerCommands(stream, config.commands.default_timeout or None).get_pid()

    peer_pid = _run(run())
    if peer_pid < 0:
        click.echo("Error: peer did not report a pid", err=True)
        raise SystemExit(1)

    click.echo(f"PID: {peer_pid}")
    conn = config.connection
    if conn.socket_path or conn.host in LOCAL_HOSTS:
        try:
            click.echo(f"Process: {psutil.Process(peer_pid).name()}")
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            click.echo("Process: unknown")


@main.command()
@click.option(
    "--category",
    "-c",
    "categories",
    multiple=True,
    help="Only show these categories (e.g. STATE, LOG, BYTECOUNT)",
)
@click.option("--bytecount", type=int, default=0, help="Enable >BYTECOUNT every N seconds")
@click.option("--state", "state_on", is_flag=True, help="Enable real-time >STATE")
@click.option("--realtime-log", is_flag=True, help="Enable real-time >LOG")
@click.option("--count", "-n", type=int, default=0, help="Exit after N notifications")
@click.pass_context
def watch(
    ctx,
    categories: tuple[str, ...],
    bytecount: int,
    state_on: bool,
    realtime_log: bool,
    count: int,
) -> None:
    """Print notifications as they arrive."""
    import asyncio

    from ovpn_mgmt import logging as console
    from ovpn_mgmt.commands import ManagerCommands
    from ovpn_mgmt.protocol import NotificationCategory
    from ovpn_mgmt.stream import MessageStream

    config = ctx.obj["config"]
    wanted = None
    if categories:
        known = {c.value for c in NotificationCategory}
        unknown = [c for c in categories if c.upper() not in known]
        if unknown:
            raise click.BadParameter(f"Unknown category: {', '.join(unknown)}")
        wanted = [NotificationCategory(c.upper()) for c in categories]

    async def run() -> str | None:
        async with await MessageStream.from_config(config) as stream:
            target = config.connection.socket_path or (
                f"{config.connection.host}:{config.connection.port}"
            )
            console.connected(target, stream.banner)

            enough = asyncio.Event()
            seen = 0

            def on_notification(n) -> None:
                nonlocal seen
                console.notification(n)
                seen += 1
                if count and seen >= count:
                    enough.set()

            stream.subscribe(on_notification, categories=wanted)

            commands = ManagerCommands(stream, config.commands.default_timeout or None)
            if state_on:
                (await commands.state_stream(True)).raise_for_status()
            if realtime_log:
                (await commands.log(True)).raise_for_status()
            if bytecount:
                (await commands.bytecount(bytecount)).raise_for_status()

            waiters = {
                asyncio.create_task(enough.wait()),
                asyncio.create_task(stream.wait_closed()),
            }
            done, rest = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for task in rest:
                task.cancel()
            return None if enough.is_set() else stream.close_reason

    reason = _run(run())
    if reason is not None:
        console.disconnected(reason)
        raise SystemExit(1)


@main.group()
def config() -> None:
    """Manage the configuration file."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
@click.pass_context
def config_init(ctx, force: bool) -> None:
    """Write the default configuration file."""
    from ovpn_mgmt import logging as console
    from ovpn_mgmt.config import Config

    path = ctx.obj["config_path"] or Config().config_path
    if path.exists() and not force:
        click.echo(f"Error: {path} already exists (use --force)", err=True)
        raise SystemExit(1)
    Config().save(path)
    console.config_created(str(path))
