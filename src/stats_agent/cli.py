"""CLI commands for stats-agent."""

import json
from pathlib import Path

import click

from stats_agent import __version__


@click.group()
@click.version_option(version=__version__, prog_name="stats-agent")
def main() -> None:
    """Sample host CPU/RAM/GPU usage and serve recent history over HTTP."""
    pass


@main.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
@click.option("--port", type=int, default=None, help="Override HTTP port")
@click.option("--interval", type=int, default=None, help="Override seconds between samples")
@click.option("--history-size", type=int, default=None, help="Override ring buffer capacity")
def run(
    config_path: Path | None,
    port: int | None,
    interval: int | None,
    history_size: int | None,
) -> None:
    """Run the agent (sampling loop + HTTP API)."""
    import asyncio

    from stats_agent.config import Config
    from stats_agent.daemon import run_daemon

    try:
        config = Config.load(config_path)
        if port is not None:
            config.server.port = port
        if interval is not None:
            config.sampling.interval_sec = interval
        if history_size is not None:
            config.sampling.history_size = history_size
        config.validate()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    asyncio.run(run_daemon(config))


@main.command()
def sample() -> None:
    """Collect one sample locally and print it as JSON."""
    import sys

    import structlog

    from stats_agent.collector import CollectionError, SystemCollector
    from stats_agent.gpu import detect_gpu

    # Keep stdout clean for the JSON document
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))

    collector = SystemCollector(gpu=detect_gpu())
    try:
        result = collector.collect()
    except CollectionError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(result.to_dict(), indent=2))


def _default_url() -> str:
    from stats_agent.config import Config

    try:
        port = Config.load().server.port
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    return f"http://localhost:{port}"


def _fetch(url: str) -> tuple[int, dict]:
    """GET a JSON endpoint from a running agent."""
    import asyncio

    import aiohttp

    async def fetch() -> tuple[int, dict]:
        timeout = aiohttp.ClientTimeout(total=10)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                return resp.status, await resp.json(content_type=None)

    return asyncio.run(fetch())


def _query(url: str) -> dict:
    """Fetch from the agent, exiting with a message on failure."""
    import aiohttp

    try:
        status, body = _fetch(url)
    except (aiohttp.ClientError, TimeoutError) as e:
        click.echo(f"Error: cannot reach agent at {url}: {e}", err=True)
        raise SystemExit(1)

    if status == 404:
        click.echo("No data available yet.", err=True)
        raise SystemExit(1)
    if status != 200:
        click.echo(f"Error: agent returned HTTP {status}", err=True)
        raise SystemExit(1)
    return body


@main.command()
@click.option("--url", default=None, help="Agent base URL (default: localhost on configured port)")
def latest(url: str | None) -> None:
    """Show the most recent sample from a running agent."""
    base = url or _default_url()
    body = _query(f"{base.rstrip('/')}/metrics/latest")
    click.echo(json.dumps(body, indent=2))


@main.command()
@click.option("--seconds", "-s", default=300, help="Window in seconds")
@click.option("--url", default=None, help="Agent base URL (default: localhost on configured port)")
@click.option("--format", "-f", "fmt", type=click.Choice(["json", "table"]), default="json")
def history(seconds: int, url: str | None, fmt: str) -> None:
    """Show sample history from a running agent."""
    base = url or _default_url()
    body = _query(f"{base.rstrip('/')}/metrics/history?seconds={seconds}")

    if fmt == "json":
        click.echo(json.dumps(body, indent=2))
        return

    samples = body.get("samples", [])
    if not samples:
        click.echo(f"No samples in the last {seconds}s.")
        return

    click.echo(f"{'Time':25}  {'CPU':>6}  {'RAM':>6}  {'GPU':>6}")
    click.echo("-" * 50)
    for s in samples:
        gpu = s.get("gpu")
        gpu_str = f"{gpu['util'] * 100:5.1f}%" if gpu else "     -"
        click.echo(
            f"{s['timestamp'][:25]:25}  {s['cpu']['usage'] * 100:5.1f}%  "
            f"{s['ram']['usage'] * 100:5.1f}%  {gpu_str}"
        )
    click.echo(f"\n{len(samples)} samples, interval {body.get('interval_sec')}s")


@main.group()
def config() -> None:
    """Show, edit or reset the agent config file."""
    pass


@config.command("show")
def config_show() -> None:
    """Display current configuration (file plus environment overrides)."""
    from stats_agent.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Config file: {cfg.config_path}")
    click.echo(f"Exists: {cfg.config_path.exists()} (environment overrides applied)")
    click.echo()
    click.echo("[server]")
    click.echo(f"  host = {cfg.server.host}")
    click.echo(f"  port = {cfg.server.port}")
    click.echo(f"  web_dir = {cfg.server.web_dir!r}")
    click.echo()
    click.echo("[sampling]")
    click.echo(f"  interval_sec = {cfg.sampling.interval_sec}")
    click.echo(f"  history_size = {cfg.sampling.history_size}")
    click.echo(f"  gpu_timeout = {cfg.sampling.gpu_timeout}")
    click.echo(f"  heartbeat_ticks = {cfg.sampling.heartbeat_ticks}")
    click.echo()
    click.echo("[logging]")
    click.echo(f"  level = {cfg.logging.level}")
    click.echo(f"  log_path = {cfg.log_path}")


@config.command("edit")
def config_edit() -> None:
    """Open the config file in $EDITOR, creating it with defaults first if needed."""
    import os
    import subprocess

    from stats_agent.config import Config

    cfg = Config()

    if not cfg.config_path.exists():
        cfg.save()
        click.echo(f"Wrote default config to {cfg.config_path}")

    editor = os.environ.get("EDITOR", "nano")
    subprocess.run([editor, str(cfg.config_path)])


@config.command("reset")
@click.confirmation_option(prompt="Overwrite the config file with defaults?")
def config_reset() -> None:
    """Overwrite the config file with default values."""
    from stats_agent.config import Config

    cfg = Config()
    cfg.save()
    click.echo(f"Wrote default config to {cfg.config_path}")
