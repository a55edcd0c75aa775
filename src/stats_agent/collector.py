"""Host metric collectors.

A Collector produces exactly one Sample per call or raises. The sampling
loop and ring buffer know nothing about what backs a collector; this module
provides the psutil-based CPU and RAM collectors and the SystemCollector
that combines them with an optional GPU collector (see stats_agent.gpu).
"""

import os
import platform
import sys
from pathlib import Path
from typing import Protocol

import psutil
import structlog

from stats_agent.ringbuffer import local_now
from stats_agent.sample import CPUMetrics, GPUMetrics, RAMMetrics, Sample

log = structlog.get_logger()

MB = 1024 * 1024


class CollectionError(Exception):
    """A collector could not produce its metrics."""


class Collector(Protocol):
    """Anything that can produce one Sample or raise."""

    def collect(self) -> Sample: ...


class CPUCollector(Protocol):
    def collect_cpu(self) -> CPUMetrics: ...


class RAMCollector(Protocol):
    def collect_ram(self) -> RAMMetrics: ...


class GPUCollector(Protocol):
    @property
    def vendor(self) -> str: ...

    def collect_gpu(self) -> GPUMetrics | None: ...


def _read_cpu_model(cpuinfo: Path = Path("/proc/cpuinfo")) -> str:
    """Return the CPU model name, or "" if it cannot be determined."""
    try:
        for line in cpuinfo.read_text().splitlines():
            if line.startswith("model name"):
                return line.split(":", 1)[1].strip()
    except OSError:
        pass
    return platform.processor()


class PsutilCPUCollector:
    """CPU usage, topology, frequency and load average via psutil.

    Usage is measured since the previous call (psutil's non-blocking mode),
    so the first reading after startup may be 0.0.
    """

    def __init__(self) -> None:
        self._model = _read_cpu_model()
        # Prime the usage counter so the first real call has a baseline
        psutil.cpu_percent(interval=None)

    def collect_cpu(self) -> CPUMetrics:
        threads = psutil.cpu_count() or os.cpu_count() or 1
        cores = psutil.cpu_count(logical=False) or threads

        frequency_mhz = 0.0
        try:
            freq = psutil.cpu_freq()
        except (OSError, NotImplementedError):
            freq = None
        if freq is not None:
            frequency_mhz = float(freq.current)

        load_avg = None
        if sys.platform != "win32":
            try:
                load_avg = tuple(float(v) for v in os.getloadavg())
            except OSError:
                load_avg = None

        return CPUMetrics(
            usage=psutil.cpu_percent(interval=None) / 100.0,
            cores=cores,
            threads=threads,
            model=self._model,
            load_avg=load_avg,  # type: ignore[arg-type]
            frequency_mhz=frequency_mhz,
        )


class PsutilRAMCollector:
    """Physical memory via psutil.virtual_memory().

    free_mb reports "available" memory (free + reclaimable buffers/cache),
    not the kernel's strict "free" figure.
    """

    def collect_ram(self) -> RAMMetrics:
        try:
            vm = psutil.virtual_memory()
        except OSError as e:
            raise CollectionError(f"virtual_memory failed: {e}") from e

        return RAMMetrics(
            total_mb=vm.total // MB,
            used_mb=vm.used // MB,
            free_mb=vm.available // MB,
            usage=vm.percent / 100.0,
        )


class SystemCollector:
    """Collects CPU, RAM and (optionally) GPU metrics into one Sample.

    CPU or RAM failure fails the whole sample. GPU absence or failure only
    drops the gpu field.
    """

    def __init__(
        self,
        cpu: CPUCollector | None = None,
        ram: RAMCollector | None = None,
        gpu: GPUCollector | None = None,
    ) -> None:
        self.cpu = cpu if cpu is not None else PsutilCPUCollector()
        self.ram = ram if ram is not None else PsutilRAMCollector()
        self.gpu = gpu

    def collect(self) -> Sample:
        """Gather all metrics.

        Raises:
            CollectionError: If CPU or RAM metrics cannot be read.
        """
        timestamp = local_now()

        try:
            cpu = self.cpu.collect_cpu()
            ram = self.ram.collect_ram()
        except CollectionError:
            raise
        except Exception as e:
            raise CollectionError(str(e)) from e

        gpu = None
        if self.gpu is not None:
            try:
                gpu = self.gpu.collect_gpu()
            except Exception as e:
                log.debug("gpu_collect_failed", vendor=self.gpu.vendor, error=str(e))

        return Sample(timestamp=timestamp, cpu=cpu, ram=ram, gpu=gpu)
