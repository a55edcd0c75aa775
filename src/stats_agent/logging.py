"""Agent output: Rich console lines for people, structlog JSON for machines.

Console side:
- Icon: glyphs shown after the level tag
- emit() plus the info/warn/error shorthands
- one helper per agent event (agent_started, sample_collected, heartbeat, ...)

File side:
- configure() routes structlog events through stdlib logging into a
  rotating JSON Lines file. Nothing structlog emits reaches the console.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from stats_agent.config import Config

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Console primitives
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Glyphs for console lines (Rich markup)."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SAMPLE = "[cyan]●[/]"
    HEARTBEAT = "[magenta]♥[/]"
    SIGNAL = "[yellow]⚡[/]"
    LISTENING = "[green]⇄[/]"


_TAGS = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


def emit(level: str, msg: str, icon: str = "") -> None:
    """Print one console line: `HH:MM:SS [level] icon msg`.

    msg may contain Rich markup. Unknown levels are shown verbatim.
    """
    stamp = datetime.now().strftime("%H:%M:%S")
    tag = _TAGS.get(level, f"[{level}]")
    prefix = f"[dim]{stamp}[/] {tag}"
    if icon:
        prefix += f" {icon}"
    _console.print(f"{prefix} {msg}")


def info(msg: str, icon: str = "") -> None:
    emit("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    emit("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    emit("error", msg, icon)


def usage_color(ratio: float) -> str:
    """Rich color for a 0.0-1.0 usage ratio: green, then yellow at 70%, red at 90%."""
    if ratio >= 0.9:
        return "bright_red"
    if ratio >= 0.7:
        return "bright_yellow"
    return "green"


def _pct(ratio: float) -> str:
    return f"[{usage_color(ratio)}]{ratio * 100:.1f}%[/]"


# ─────────────────────────────────────────────────────────────────────────────
# Agent events
# ─────────────────────────────────────────────────────────────────────────────


def agent_starting(version: str) -> None:
    info(f"[bold cyan]stats-agent[/] v{version}", Icon.WAIT)


def agent_started() -> None:
    info("Agent started", Icon.OK)


def agent_stopping() -> None:
    info("Agent stopping...", Icon.WAIT)


def agent_stopped() -> None:
    info("Agent stopped", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Caught [bold]{name}[/], shutting down", Icon.SIGNAL)


def config_summary(port: int, interval_sec: int, history_size: int) -> None:
    """Print the effective port, sampling interval and buffer capacity."""
    info(
        f"Config: port=[cyan]{port}[/], interval=[cyan]{interval_sec}s[/], "
        f"history=[cyan]{history_size}[/] samples"
    )


def gpu_summary(vendor: str | None) -> None:
    if vendor:
        info(f"GPU: [cyan]{vendor}[/]")
    else:
        info("GPU: [dim]none detected[/]")


def server_listening(host: str, port: int, ui: bool) -> None:
    info(f"HTTP listening on [cyan]{host}:{port}[/]", Icon.LISTENING)
    if ui:
        info(f"Web UI at [cyan]http://localhost:{port}/ui/[/]")


def sample_collected(cpu: float, ram: float, gpu: float | None = None, initial: bool = False) -> None:
    """Print a sample's usage ratios, colored by level.

    The first sample after startup is labelled so it stands out in the log.
    """
    parts = [f"CPU={_pct(cpu)}", f"RAM={_pct(ram)}"]
    if gpu is not None:
        parts.append(f"GPU={_pct(gpu)}")
    label = "Initial sample: " if initial else ""
    info(label + ", ".join(parts), Icon.SAMPLE)


def sample_failed(reason: str) -> None:
    error(f"Sample failed: {reason}", Icon.FAIL)


def heartbeat(ticks: int, failures: int, buffer_size: int, buffer_capacity: int) -> None:
    """Print loop counters and buffer fill; failures turn red when non-zero."""
    failed = f"[red]{failures}[/]" if failures else "0"
    info(
        f"[cyan]{ticks}[/] ticks, {failed} failed, [dim]{buffer_size}/{buffer_capacity} buffered[/]",
        Icon.HEARTBEAT,
    )


def sampling_stopped() -> None:
    info("Sampling stopped")


# ─────────────────────────────────────────────────────────────────────────────
# structlog → JSON Lines file
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Processor stamping every event with `source`."""

    def add_source(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return add_source


def _shared_processors() -> list[structlog.types.Processor]:
    """Processors applied to structlog events and foreign stdlib records alike."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
        structlog.processors.add_log_level,
        _add_source("agent"),
    ]


def configure(config: Config) -> None:
    """Send structlog events to config.log_path as rotating JSON Lines.

    Timestamps are local time, like sample timestamps. The level comes from
    config.logging.level; aiohttp's per-request access log is held to WARNING.
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.logging.log_max_bytes,
        backupCount=config.logging.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[*_shared_processors(), structlog.processors.format_exc_info],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
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
