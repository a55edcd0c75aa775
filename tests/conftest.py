"""Shared test fixtures for stats-agent."""

from datetime import datetime, timedelta, timezone

import pytest

from stats_agent.sample import CPUMetrics, GPUMetrics, RAMMetrics, Sample

BASE_TIME = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_sample(
    timestamp: datetime | None = None,
    cpu: float = 0.25,
    ram: float = 0.5,
    gpu: float | None = None,
) -> Sample:
    """Create a Sample for testing with usage ratios and sensible defaults."""
    return Sample(
        timestamp=timestamp or BASE_TIME,
        cpu=CPUMetrics(usage=cpu, cores=4, threads=8),
        ram=RAMMetrics(total_mb=16000, used_mb=int(16000 * ram), free_mb=16000 - int(16000 * ram), usage=ram),
        gpu=GPUMetrics(vendor="nvidia", model="Test GPU", util=gpu) if gpu is not None else None,
    )


def make_samples(count: int, start: datetime = BASE_TIME, step: float = 1.0) -> list[Sample]:
    """Create `count` samples spaced `step` seconds apart; cpu usage encodes the index."""
    return [
        make_sample(timestamp=start + timedelta(seconds=i * step), cpu=i / 1000)
        for i in range(count)
    ]


class FakeClock:
    """Settable clock for RingBuffer window tests."""

    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at BASE_TIME."""
    return FakeClock()


class FakeCollector:
    """Collector that returns canned samples or raises canned errors, in order.

    Once the script is exhausted the last entry repeats.
    """

    def __init__(self, script: list[Sample | Exception]) -> None:
        self.script = script
        self.calls = 0

    def collect(self) -> Sample:
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item
