"""CLI entry point for the hasync daemon."""

import asyncio
from pathlib import Path
from typing import Any

import aiohttp
import click

from hasync import __version__
from hasync.config import Config, load_config
from hasync.formatting import format_date, format_time_ago
from hasync.logging import setup_logging


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None) -> None:
    """hasync - Pair mobile devices with your Home Assistant coordinator."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


async def _request(config: Config, method: str, path: str) -> Any:
    """Call the local daemon's HTTP API.

    Returns:
        The `data` field of the success envelope.

    Raises:
        click.ClickException: If the daemon is unreachable or returns an error.
    """
    url = f"http://127.0.0.1:{config.port}{path}"
    headers = {}
    if config.admin_token:
        headers["Authorization"] = f"Bearer {config.admin_token}"

    try:
        async with aiohttp.ClientSession() as http:
            async with http.request(method, url, headers=headers) as resp:
                body = await resp.json(content_type=None)
    except aiohttp.ClientConnectorError:
        raise click.ClickException(
            "Cannot connect to daemon. Is it running? Start it with: hasync daemon start"
        )
    except (aiohttp.ClientError, ValueError) as e:
        raise click.ClickException(f"Daemon request failed: {e}")

    if not isinstance(body, dict) or not body.get("success"):
        message = body.get("message") if isinstance(body, dict) else None
        raise click.ClickException(message or f"Daemon returned HTTP {resp.status}")
    return body.get("data")


@main.group()
def daemon() -> None:
    """Daemon control commands."""
    pass


@daemon.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the daemon."""
    from hasync.daemon import Daemon, StartupError
    from hasync.instance_lock import InstanceAlreadyRunningError, InstanceLock, lock_path_for

    config = ctx.obj["config"]
    lock = InstanceLock(lock_path_for(config.database_file))

    try:
        lock.acquire()
    except InstanceAlreadyRunningError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _start():
        daemon = Daemon(config=config)

        try:
            await daemon.start()
            click.echo(f"Daemon started on port {daemon._get_server_port()}")
            click.echo("Press Ctrl+C to stop")
            await daemon.run_forever()
        except StartupError as e:
            click.echo(f"Startup error: {e}", err=True)
            raise SystemExit(1)
        finally:
            await daemon.stop()

    try:
        asyncio.run(_start())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    finally:
        lock.release()


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"hasync version {__version__}")


@main.command()
@click.pass_context
def pin(ctx: click.Context) -> None:
    """Issue a pairing PIN to type into the mobile app."""
    data = asyncio.run(_request(ctx.obj["config"], "GET", "/api/pairing/pin"))

    minutes, seconds = divmod(int(data["expires_in"]), 60)
    click.echo(f"Pairing PIN: {data['pin']}")
    click.echo(f"Valid for {minutes}m {seconds:02d}s")


@main.group()
def clients() -> None:
    """Paired client management commands."""
    pass


@clients.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include revoked clients")
@click.option("--full", is_flag=True, help="Show full client IDs")
@click.pass_context
def clients_list(ctx: click.Context, show_all: bool, full: bool) -> None:
    """List paired clients, most recently seen first."""
    path = "/api/clients?active=false" if show_all else "/api/clients"
    items = asyncio.run(_request(ctx.obj["config"], "GET", path))

    if not items:
        click.echo("No paired clients.")
        return

    click.echo(f"{'ID':<12} {'NAME':<20} {'TYPE':<8} {'PAIRED':<12} {'LAST SEEN':<16} STATUS")
    click.echo("-" * 80)

    for item in items:
        client_id = item["id"] if full else item["id"][:8]
        status = "active" if item["is_active"] else "revoked"
        click.echo(
            f"{client_id:<12} "
            f"{item['name'][:20]:<20} "
            f"{item['device_type']:<8} "
            f"{format_date(item['paired_at']):<12} "
            f"{format_time_ago(item['last_seen']):<16} "
            f"{status}"
        )


async def _resolve_client_id(config: Config, prefix: str) -> dict[str, Any]:
    """Resolve a (possibly shortened) client id, like git short hashes."""
    items = await _request(config, "GET", "/api/clients?active=false")
    exact = [c for c in items if c["id"] == prefix]
    if exact:
        return exact[0]

    matches = [c for c in items if c["id"].startswith(prefix)]
    if not matches:
        raise click.ClickException(f"Client '{prefix}' not found.")
    if len(matches) > 1:
        names = ", ".join(f"{c['id'][:8]} ({c['name']})" for c in matches)
        raise click.ClickException(f"Ambiguous client ID '{prefix}'. Matches: {names}")
    return matches[0]


@clients.command("revoke")
@click.argument("client_id")
@click.pass_context
def clients_revoke(ctx: click.Context, client_id: str) -> None:
    """Revoke a client's access. Its live connection is closed."""
    config = ctx.obj["config"]

    async def _revoke():
        client = await _resolve_client_id(config, client_id)
        await _request(config, "POST", f"/api/clients/{client['id']}/revoke")
        return client

    client = asyncio.run(_revoke())
    click.echo(f"Revoked client '{client['name']}'.")


@clients.command("remove")
@click.argument("client_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
@click.pass_context
def clients_remove(ctx: click.Context, client_id: str, force: bool) -> None:
    """Delete a paired client permanently."""
    config = ctx.obj["config"]

    client = asyncio.run(_resolve_client_id(config, client_id))

    if not force:
        last_seen = format_time_ago(client["last_seen"])
        if not click.confirm(f"Remove client '{client['name']}' (last seen {last_seen})?"):
            click.echo("Aborted.")
            return

    asyncio.run(_request(config, "DELETE", f"/api/clients/{client['id']}"))
    click.echo("Client removed.")
