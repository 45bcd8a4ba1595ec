"""CLI entry point for ipwatcher."""

import asyncio
from pathlib import Path

import click

from ipwatcher import __version__
from ipwatcher.config import load_config
from ipwatcher.errors import ConfigurationError, IpWatcherError
from ipwatcher.logging import setup_logging


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
    """ipwatcher - e-mail me when my public IP changes."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--no-jitter", is_flag=True, help="Skip the random startup delay.")
@click.pass_context
def run(ctx: click.Context, no_jitter: bool) -> None:
    """Watch the public IP until interrupted."""
    from ipwatcher.daemon import WatcherDaemon
    from ipwatcher.daemon_lock import DaemonAlreadyRunningError, DaemonLock

    config = ctx.obj["config"]
    lock = DaemonLock(Path(config.lock_file))

    try:
        lock.acquire()
    except DaemonAlreadyRunningError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    async def _run():
        daemon = WatcherDaemon(config=config)
        await daemon.start()
        click.echo("Press Ctrl+C to stop")
        await daemon.run_forever(skip_jitter=no_jitter)

    try:
        asyncio.run(_run())
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)
    except IpWatcherError as e:
        click.echo(f"Startup error: {e}", err=True)
        raise SystemExit(1)
    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    finally:
        lock.release()


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Run a single check now and record any change."""
    from ipwatcher.daemon import WatcherDaemon

    config = ctx.obj["config"]

    try:
        outcome = asyncio.run(WatcherDaemon(config=config).check_once())
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(1)
    except IpWatcherError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Check result: {outcome.value}")
    if outcome.is_failure:
        raise SystemExit(2)


@main.command()
@click.option("--limit", "-n", type=int, default=20, help="Rows to show (0 for all).")
@click.pass_context
def history(ctx: click.Context, limit: int) -> None:
    """List recorded addresses, newest first."""
    from ipwatcher.history import HistoryStore

    config = ctx.obj["config"]
    db_path = Path(config.db_path).expanduser()

    if not db_path.exists():
        click.echo("No addresses recorded yet.")
        return

    async def _list():
        async with HistoryStore(db_path) as store:
            return await store.observations(limit=limit or None)

    try:
        observations = asyncio.run(_list())
    except IpWatcherError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if not observations:
        click.echo("No addresses recorded yet.")
        return

    click.echo(f"{'OBSERVED AT (UTC)':<22} {'ADDRESS'}")
    click.echo("-" * 62)
    for obs in observations:
        when = obs.observed_at.strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{when:<22} {obs.address}")


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"ipwatcher version {__version__}")
