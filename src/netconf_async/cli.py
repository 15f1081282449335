"""netconf-async CLI.

Connects to a NETCONF server, runs one operation and prints the result.

Usage:
    netconf-async --host router1 hello
    netconf-async --command "ssh -s admin@router1 netconf" get-config --filter /interfaces
    netconf-async --host router1 edit-config candidate change.xml --default-operation merge
    netconf-async --host router1 commit --confirmed --confirm-timeout 120
    netconf-async --host router1 --format json subscribe --count 10

Connection settings can also come from NETCONF_HOST, NETCONF_PORT,
NETCONF_COMMAND and NETCONF_TIMEOUT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TextIO, TypeVar

import click

from . import __version__
from .client import NetconfClient, connect_command, connect_tcp
from .errors import NetconfError
from .protocol.codec import URL
from .protocol.messages import RPCReply
from .protocol.operations import (
    CancelCommitRequest,
    CommitOptions,
    CommitRequest,
    CopyConfigRequest,
    CreateSubscriptionRequest,
    DeleteConfigRequest,
    EditConfigOptions,
    EditConfigRequest,
    ErrorStrategy,
    GetConfigRequest,
    GetRequest,
    KillSessionRequest,
    LockRequest,
    MergeStrategy,
    Request,
    SubscriptionOptions,
    TestStrategy,
    UnlockRequest,
    ValidateRequest,
)
from .session import SessionConfig

# Output format options
FORMAT_XML = "xml"
FORMAT_JSON = "json"

T = TypeVar("T")
R = TypeVar("R", bound=Request)


@dataclass
class CliSettings:
    """Connection settings shared by all subcommands."""

    host: str | None = None
    port: int = 830
    command: str | None = None
    timeout: float = 30.0
    output_format: str = FORMAT_XML

    def session_config(self) -> SessionConfig:
        return SessionConfig(handshake_timeout=self.timeout, call_timeout=self.timeout)


async def _connect(settings: CliSettings) -> NetconfClient:
    config = settings.session_config()
    if settings.command:
        return await connect_command(shlex.split(settings.command), config)
    if settings.host:
        return await connect_tcp(settings.host, settings.port, config)
    raise click.UsageError("either --host or --command is required")


def _run(ctx: click.Context, operation: Callable[[NetconfClient], Awaitable[T]]) -> T:
    """Connect, run one operation, close."""
    settings: CliSettings = ctx.obj

    async def execute() -> T:
        client = await _connect(settings)
        async with client:
            return await operation(client)

    try:
        return asyncio.run(execute())
    except NetconfError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e
    except OSError as e:
        raise click.ClickException(f"connection failed: {e}") from e


def _prepare(build: Callable[[], R]) -> R:
    """Build and encode a request so invalid arguments fail before connecting."""
    try:
        request = build()
        request.to_element()
    except NetconfError as e:
        raise click.ClickException(f"{type(e).__name__}: {e}") from e
    return request


def _as_source(value: str) -> str | URL:
    """Values that look like URLs become URL, anything else is a datastore name."""
    return URL(value) if "://" in value else value


def _echo_reply(ctx: click.Context, reply: RPCReply) -> None:
    settings: CliSettings = ctx.obj
    if settings.output_format == FORMAT_JSON:
        click.echo(json.dumps(reply.model_dump(mode="json", exclude={"raw"}), indent=2))
    else:
        click.echo("ok" if reply.ok else reply.raw)


def _echo_data(ctx: click.Context, data: str) -> None:
    settings: CliSettings = ctx.obj
    if settings.output_format == FORMAT_JSON:
        click.echo(json.dumps({"data": data}, indent=2))
    else:
        click.echo(data)


@click.group()
@click.option("--host", envvar="NETCONF_HOST", help="NETCONF server host (plain TCP)")
@click.option("--port", envvar="NETCONF_PORT", default=830, show_default=True, help="NETCONF server port")
@click.option(
    "--command",
    envvar="NETCONF_COMMAND",
    help='Command whose stdin/stdout carry the session, e.g. "ssh -s host netconf"',
)
@click.option(
    "--timeout",
    envvar="NETCONF_TIMEOUT",
    type=float,
    default=30.0,
    show_default=True,
    help="Handshake and per-call timeout in seconds",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_XML, FORMAT_JSON]),
    default=FORMAT_XML,
    show_default=True,
    help="Output format",
)
@click.option("--verbose", "-v", is_flag=True, help="Log protocol activity to stderr")
@click.version_option(__version__, prog_name="netconf-async")
@click.pass_context
def main(
    ctx: click.Context,
    host: str | None,
    port: int,
    command: str | None,
    timeout: float,
    output_format: str,
    verbose: bool,
) -> None:
    """NETCONF client - run one operation against a server."""
    if host and command:
        raise click.UsageError("--host and --command are mutually exclusive")

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = CliSettings(
        host=host,
        port=port,
        command=command,
        timeout=timeout,
        output_format=output_format,
    )


# =============================================================================
# Session information
# =============================================================================


@main.command()
@click.pass_context
def hello(ctx: click.Context) -> None:
    """Show the session-id and capabilities advertised by the server."""

    async def operation(client: NetconfClient) -> dict[str, Any]:
        return {"session_id": client.session_id, "capabilities": list(client.capabilities)}

    info = _run(ctx, operation)
    if ctx.obj.output_format == FORMAT_JSON:
        click.echo(json.dumps(info, indent=2))
        return
    click.echo(f"Session: {info['session_id']}")
    for capability in info["capabilities"]:
        click.echo(f"  {capability}")


# =============================================================================
# Retrieval
# =============================================================================


@main.command("get-config")
@click.option("--source", default="running", show_default=True, help="Datastore to read")
@click.option("--filter", "filter_path", help='Path filter, e.g. /interfaces/interface[name="eth0"]')
@click.pass_context
def get_config(ctx: click.Context, source: str, filter_path: str | None) -> None:
    """Retrieve a configuration datastore."""
    request = _prepare(lambda: GetConfigRequest(source=source, filter=filter_path))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_data(ctx, reply.data or "")


@main.command()
@click.option("--filter", "filter_path", help="Path filter")
@click.pass_context
def get(ctx: click.Context, filter_path: str | None) -> None:
    """Retrieve running configuration and state data."""
    request = _prepare(lambda: GetRequest(filter=filter_path))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_data(ctx, reply.data or "")


# =============================================================================
# Configuration changes
# =============================================================================


@main.command("edit-config")
@click.argument("target")
@click.argument("config_file", type=click.File("r"), required=False)
@click.option("--url", help="Load the configuration from a URL instead of a file")
@click.option("--default-operation", type=click.Choice(["merge", "replace", "none"]))
@click.option("--test-option", type=click.Choice([s.value for s in TestStrategy]))
@click.option("--error-option", type=click.Choice([s.value for s in ErrorStrategy]))
@click.pass_context
def edit_config(
    ctx: click.Context,
    target: str,
    config_file: TextIO | None,
    url: str | None,
    default_operation: str | None,
    test_option: str | None,
    error_option: str | None,
) -> None:
    """Load CONFIG_FILE (XML, "-" for stdin) into TARGET."""
    if (config_file is None) == (url is None):
        raise click.UsageError("pass exactly one of CONFIG_FILE or --url")
    config: str | URL = URL(url) if url is not None else config_file.read()  # type: ignore[union-attr]
    options = EditConfigOptions(
        default_operation=MergeStrategy(default_operation) if default_operation else None,
        test_option=test_option,
        error_option=error_option,
    )
    request = _prepare(lambda: EditConfigRequest(target=target, config=config, options=options))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command("copy-config")
@click.argument("source")
@click.argument("target")
@click.pass_context
def copy_config(ctx: click.Context, source: str, target: str) -> None:
    """Replace TARGET with SOURCE (datastore names or URLs)."""
    request = _prepare(lambda: CopyConfigRequest(source=_as_source(source), target=_as_source(target)))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command("delete-config")
@click.argument("target")
@click.pass_context
def delete_config(ctx: click.Context, target: str) -> None:
    """Delete a datastore or URL."""
    request = _prepare(lambda: DeleteConfigRequest(target=_as_source(target)))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command()
@click.argument("source")
@click.pass_context
def validate(ctx: click.Context, source: str) -> None:
    """Validate a datastore or URL."""
    request = _prepare(lambda: ValidateRequest(source=_as_source(source)))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command()
@click.option("--confirmed", is_flag=True, help="Require a confirming commit")
@click.option("--confirm-timeout", type=int, help="Seconds before an unconfirmed commit is rolled back")
@click.option("--persist", help="Token allowing another session to confirm")
@click.option("--persist-id", help="Confirm the commit started with this persist token")
@click.pass_context
def commit(
    ctx: click.Context,
    confirmed: bool,
    confirm_timeout: int | None,
    persist: str | None,
    persist_id: str | None,
) -> None:
    """Commit the candidate datastore."""
    options = CommitOptions(
        confirmed=confirmed,
        confirm_timeout=confirm_timeout,
        persist=persist,
        persist_id=persist_id,
    )
    request = _prepare(lambda: CommitRequest.from_options(options))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command("cancel-commit")
@click.option("--persist-id", help="Persist token of the commit to cancel")
@click.pass_context
def cancel_commit(ctx: click.Context, persist_id: str | None) -> None:
    """Cancel an ongoing confirmed commit."""
    request = _prepare(lambda: CancelCommitRequest(persist_id=persist_id))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command("discard-changes")
@click.pass_context
def discard_changes(ctx: click.Context) -> None:
    """Revert the candidate datastore to running."""
    reply = _run(ctx, lambda client: client.discard_changes())
    _echo_reply(ctx, reply)


# =============================================================================
# Locks and sessions
# =============================================================================


@main.command()
@click.option("--target", default="running", show_default=True)
@click.pass_context
def lock(ctx: click.Context, target: str) -> None:
    """Lock a datastore for the duration of the session."""
    request = _prepare(lambda: LockRequest(target=target))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command()
@click.option("--target", default="running", show_default=True)
@click.pass_context
def unlock(ctx: click.Context, target: str) -> None:
    """Release a datastore lock."""
    request = _prepare(lambda: UnlockRequest(target=target))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


@main.command("kill-session")
@click.argument("session_id", type=int)
@click.pass_context
def kill_session(ctx: click.Context, session_id: int) -> None:
    """Terminate another NETCONF session."""
    request = _prepare(lambda: KillSessionRequest(session_id=session_id))
    reply = _run(ctx, lambda client: client.dispatch(request))
    _echo_reply(ctx, reply)


# =============================================================================
# Notifications
# =============================================================================


@main.command()
@click.option("--stream", help="Event stream (default NETCONF)")
@click.option("--filter", "filter_path", help="Path filter")
@click.option("--start-time", type=click.DateTime(), help="Replay events from this time (UTC)")
@click.option("--end-time", type=click.DateTime(), help="Stop at this time (UTC)")
@click.option("--count", "-n", type=int, help="Exit after this many notifications")
@click.pass_context
def subscribe(
    ctx: click.Context,
    stream: str | None,
    filter_path: str | None,
    start_time: datetime | None,
    end_time: datetime | None,
    count: int | None,
) -> None:
    """Subscribe to notifications and print them as they arrive."""
    settings: CliSettings = ctx.obj
    options = SubscriptionOptions(stream=stream, filter=filter_path, start_time=start_time, end_time=end_time)
    request = _prepare(lambda: CreateSubscriptionRequest(options=options))

    async def operation(client: NetconfClient) -> int:
        await client.dispatch(request)
        click.echo(f"Subscribed to {request.stream}", err=True)
        received = 0
        async for notification in client.notifications():
            if settings.output_format == FORMAT_JSON:
                click.echo(notification.model_dump_json(exclude={"raw"}))
            else:
                click.echo(notification.raw)
            received += 1
            if count is not None and received >= count:
                break
        return received

    try:
        received = _run(ctx, operation)
    except KeyboardInterrupt:
        click.echo("\nInterrupted", err=True)
        return
    click.echo(f"Received {received} notification(s)", err=True)


if __name__ == "__main__":
    main()
