"""Agent process: wires collector, ring buffer, sampling loop and HTTP server."""

import asyncio
import signal
from dataclasses import dataclass
from pathlib import Path

import structlog

from stats_agent import __version__
from stats_agent import logging as console
from stats_agent.api import HTTPServer, create_app
from stats_agent.collector import Collector, SystemCollector
from stats_agent.config import Config
from stats_agent.gpu import detect_gpu
from stats_agent.ringbuffer import RingBuffer
from stats_agent.sampler import SamplingLoop

log = structlog.get_logger()


@dataclass
class AgentContext:
    """Everything shared between the sampling loop and the HTTP layer.

    Built once by the entry point and passed explicitly; there is no
    module-level buffer or collector.
    """

    config: Config
    buffer: RingBuffer
    collector: Collector
    gpu_vendor: str | None = None


def build_context(config: Config) -> AgentContext:
    """Probe for a GPU and construct the buffer and collector.

    Raises:
        ValueError: If the configured history size is not positive.
    """
    gpu = detect_gpu(timeout=config.sampling.gpu_timeout)
    return AgentContext(
        config=config,
        buffer=RingBuffer(capacity=config.sampling.history_size),
        collector=SystemCollector(gpu=gpu),
        gpu_vendor=gpu.vendor if gpu is not None else None,
    )


class Daemon:
    """Runs the sampling loop and serves its buffer over HTTP until signalled."""

    def __init__(self, config: Config, context: AgentContext | None = None):
        self.config = config
        self.context = context if context is not None else build_context(config)

        self.sampler = SamplingLoop(
            self.context.collector,
            self.context.buffer,
            interval=config.sampling.interval_sec,
            heartbeat_ticks=config.sampling.heartbeat_ticks,
        )
        web_dir = Path(config.server.web_dir).expanduser() if config.server.web_dir else None
        self.app = create_app(
            self.context.buffer,
            config.sampling.interval_sec,
            sampler=self.sampler,
            web_dir=web_dir,
        )
        self._ui_enabled = web_dir is not None and web_dir.is_dir()
        if web_dir is not None and not self._ui_enabled:
            console.warn(f"Web UI directory [cyan]{web_dir}[/] not found, UI disabled")
        self._server: HTTPServer | None = None

    async def start(self) -> None:
        """Start serving and run the sampling loop until shutdown."""
        log.info("agent_starting", version=__version__)
        console.agent_starting(__version__)

        sampling = self.config.sampling
        log.info(
            "agent_config",
            port=self.config.server.port,
            interval_sec=sampling.interval_sec,
            history_size=sampling.history_size,
            gpu=self.context.gpu_vendor,
        )
        console.config_summary(self.config.server.port, sampling.interval_sec, sampling.history_size)
        console.gpu_summary(self.context.gpu_vendor)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))
            except NotImplementedError:
                pass  # Windows: KeyboardInterrupt ends asyncio.run() instead

        self._server = HTTPServer(self.app, self.config.server.host, self.config.server.port)
        await self._server.start()
        console.server_listening(self.config.server.host, self.config.server.port, self._ui_enabled)

        log.info("agent_started")
        console.agent_started()

        await self.sampler.run()

    async def stop(self) -> None:
        """Stop sampling and the HTTP server."""
        log.info("agent_stopping")
        console.agent_stopping()

        self.sampler.stop()

        if self._server:
            await self._server.stop()
            self._server = None

        log.info("agent_stopped")
        console.agent_stopped()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self.sampler.stop()


async def run_daemon(config: Config | None = None) -> None:
    """Run the agent until shutdown.

    Args:
        config: Optional config, loads from file and environment if not provided
    """
    if config is None:
        config = Config.load()

    console.configure(config)

    daemon = Daemon(config)

    try:
        await daemon.start()
    except Exception as e:
        log.exception("agent_crashed", error=str(e))
        raise
    finally:
        await daemon.stop()
