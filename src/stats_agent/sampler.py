"""Periodic sampling loop feeding the ring buffer."""

import asyncio
from datetime import datetime
from enum import Enum

import structlog

from stats_agent import logging as console
from stats_agent.collector import Collector
from stats_agent.ringbuffer import RingBuffer
from stats_agent.sample import Sample

log = structlog.get_logger()


class LoopState(Enum):
    """Lifecycle of a SamplingLoop. STOPPED is terminal."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class SamplingLoop:
    """Calls the collector once immediately, then every `interval` seconds.

    Ticks are scheduled from the loop's start time, so a slow collection
    shortens the following wait instead of drifting the schedule; deadlines
    missed entirely are skipped, not replayed. A failed collection is
    logged and leaves the buffer untouched. stop() ends the loop at the next
    tick boundary and wakes it immediately if it is waiting.

    The collector runs in the default executor and the buffer lock is only
    taken by add(), after the sample exists.
    """

    def __init__(
        self,
        collector: Collector,
        buffer: RingBuffer,
        interval: float,
        *,
        heartbeat_ticks: int = 20,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval!r}")
        self.collector = collector
        self.buffer = buffer
        self.interval = interval
        self.heartbeat_ticks = heartbeat_ticks

        self.state = LoopState.IDLE
        self.ticks = 0
        self.failures = 0
        self.last_error: str | None = None
        self.last_sample_time: datetime | None = None
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        """True once stop() has been called."""
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request the loop to stop. Safe to call more than once."""
        self._stop_event.set()

    async def run(self) -> None:
        """Run until stop() is called or the task is cancelled.

        Raises:
            RuntimeError: If the loop has already been started.
        """
        if self.state is not LoopState.IDLE:
            raise RuntimeError(f"Sampling loop cannot be restarted (state={self.state.value})")
        self.state = LoopState.RUNNING
        log.info("sampling_started", interval=self.interval)

        loop = asyncio.get_running_loop()
        start = loop.time()
        next_tick = 1

        try:
            if not self.stopping:
                await self._tick(initial=True)

            while not self.stopping:
                now = loop.time()
                deadline = start + next_tick * self.interval
                if deadline <= now:
                    skipped = int((now - deadline) // self.interval) + 1
                    log.debug("ticks_skipped", count=skipped)
                    next_tick += skipped
                    deadline = start + next_tick * self.interval

                if await self._wait_for_stop(deadline - now):
                    break

                await self._tick()
                next_tick += 1
        except asyncio.CancelledError:
            log.info("sampling_cancelled")
        finally:
            self.state = LoopState.STOPPED
            log.info("sampling_stopped", ticks=self.ticks, failures=self.failures)
            console.sampling_stopped()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Wait up to timeout seconds; return True if stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _tick(self, initial: bool = False) -> None:
        """Run one tick; every heartbeat_ticks-th tick also logs a heartbeat."""
        self.ticks += 1
        await self._collect(initial)
        if self.ticks % self.heartbeat_ticks == 0:
            self._heartbeat()

    async def _collect(self, initial: bool) -> None:
        """Collect one sample and store it."""
        loop = asyncio.get_running_loop()

        try:
            sample = await loop.run_in_executor(None, self.collector.collect)
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            log.error("sample_failed", error=str(e), initial=initial)
            console.sample_failed(str(e))
            return

        if self.stopping:
            log.info("sample_discarded", reason="stop requested during collection")
            return

        self.buffer.add(sample)
        self.last_sample_time = sample.timestamp
        self._log_sample(sample, initial)

    def _heartbeat(self) -> None:
        size = len(self.buffer)
        log.info(
            "sampling_heartbeat",
            ticks=self.ticks,
            failures=self.failures,
            buffer=f"{size}/{self.buffer.capacity}",
        )
        console.heartbeat(self.ticks, self.failures, size, self.buffer.capacity)

    def _log_sample(self, sample: Sample, initial: bool) -> None:
        gpu_util = sample.gpu.util if sample.gpu is not None else None
        log.info(
            "sample_collected",
            cpu=round(sample.cpu.usage, 3),
            ram=round(sample.ram.usage, 3),
            gpu=round(gpu_util, 3) if gpu_util is not None else None,
            initial=initial,
        )
        console.sample_collected(sample.cpu.usage, sample.ram.usage, gpu_util, initial=initial)
