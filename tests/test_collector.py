"""Tests for host metric collectors."""

from collections import namedtuple
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from stats_agent.collector import (
    MB,
    CollectionError,
    PsutilCPUCollector,
    PsutilRAMCollector,
    SystemCollector,
    _read_cpu_model,
)
from stats_agent.gpu import GPUError
from stats_agent.sample import CPUMetrics, GPUMetrics, RAMMetrics

VirtualMemory = namedtuple("VirtualMemory", ["total", "available", "percent", "used", "free"])
CPUFreq = namedtuple("CPUFreq", ["current", "min", "max"])

CPU = CPUMetrics(usage=0.2, cores=4, threads=8)
RAM = RAMMetrics(total_mb=16000, used_mb=4000, free_mb=12000, usage=0.25)
GPU = GPUMetrics(vendor="nvidia", model="RTX 4090", util=0.1)


def fake_part(method: str, result=None, error: Exception | None = None, vendor: str = "nvidia"):
    """Build a sub-collector whose `method` returns result or raises error."""
    part = MagicMock()
    part.vendor = vendor
    if error is not None:
        getattr(part, method).side_effect = error
    else:
        getattr(part, method).return_value = result
    return part


class TestSystemCollector:
    def test_collects_cpu_and_ram(self):
        collector = SystemCollector(
            cpu=fake_part("collect_cpu", CPU),
            ram=fake_part("collect_ram", RAM),
        )
        sample = collector.collect()

        assert sample.cpu == CPU
        assert sample.ram == RAM
        assert sample.gpu is None
        assert sample.timestamp.tzinfo is not None

    def test_includes_gpu_when_available(self):
        collector = SystemCollector(
            cpu=fake_part("collect_cpu", CPU),
            ram=fake_part("collect_ram", RAM),
            gpu=fake_part("collect_gpu", GPU),
        )
        assert collector.collect().gpu == GPU

    def test_gpu_failure_drops_gpu_only(self):
        collector = SystemCollector(
            cpu=fake_part("collect_cpu", CPU),
            ram=fake_part("collect_ram", RAM),
            gpu=fake_part("collect_gpu", error=GPUError("nvidia-smi timed out")),
        )
        sample = collector.collect()

        assert sample.gpu is None
        assert sample.cpu == CPU

    def test_cpu_failure_raises_collection_error(self):
        collector = SystemCollector(
            cpu=fake_part("collect_cpu", error=RuntimeError("no /proc")),
            ram=fake_part("collect_ram", RAM),
        )
        with pytest.raises(CollectionError, match="no /proc"):
            collector.collect()

    def test_ram_collection_error_propagates_unchanged(self):
        err = CollectionError("virtual_memory failed")
        collector = SystemCollector(
            cpu=fake_part("collect_cpu", CPU),
            ram=fake_part("collect_ram", error=err),
        )
        with pytest.raises(CollectionError) as exc_info:
            collector.collect()
        assert exc_info.value is err

    def test_default_parts_are_psutil(self):
        with patch("stats_agent.collector.psutil"):
            collector = SystemCollector()
        assert isinstance(collector.cpu, PsutilCPUCollector)
        assert isinstance(collector.ram, PsutilRAMCollector)
        assert collector.gpu is None


class TestPsutilRAMCollector:
    def test_reports_available_as_free(self):
        vm = VirtualMemory(
            total=16000 * MB, available=10000 * MB, percent=37.5, used=6000 * MB, free=2000 * MB
        )
        with patch("stats_agent.collector.psutil.virtual_memory", return_value=vm):
            ram = PsutilRAMCollector().collect_ram()

        assert ram == RAMMetrics(total_mb=16000, used_mb=6000, free_mb=10000, usage=0.375)

    def test_oserror_becomes_collection_error(self):
        with patch("stats_agent.collector.psutil.virtual_memory", side_effect=OSError("denied")):
            with pytest.raises(CollectionError, match="denied"):
                PsutilRAMCollector().collect_ram()


class TestPsutilCPUCollector:
    def test_collect_cpu(self):
        with (
            patch("stats_agent.collector._read_cpu_model", return_value="Test CPU"),
            patch("stats_agent.collector.psutil") as mock_psutil,
            patch("stats_agent.collector.os.getloadavg", return_value=(1.5, 1.0, 0.5)),
            patch("stats_agent.collector.sys.platform", "linux"),
        ):
            mock_psutil.cpu_percent.return_value = 42.0
            mock_psutil.cpu_count.side_effect = lambda logical=True: 16 if logical else 8
            mock_psutil.cpu_freq.return_value = CPUFreq(current=3200.0, min=800.0, max=4800.0)

            cpu = PsutilCPUCollector().collect_cpu()

        assert cpu.usage == pytest.approx(0.42)
        assert cpu.threads == 16
        assert cpu.cores == 8
        assert cpu.model == "Test CPU"
        assert cpu.load_avg == (1.5, 1.0, 0.5)
        assert cpu.frequency_mhz == 3200.0

    def test_missing_frequency_and_physical_cores(self):
        with (
            patch("stats_agent.collector._read_cpu_model", return_value=""),
            patch("stats_agent.collector.psutil") as mock_psutil,
            patch("stats_agent.collector.sys.platform", "win32"),
        ):
            mock_psutil.cpu_percent.return_value = 0.0
            mock_psutil.cpu_count.side_effect = lambda logical=True: 4 if logical else None
            mock_psutil.cpu_freq.return_value = None

            cpu = PsutilCPUCollector().collect_cpu()

        assert cpu.cores == 4
        assert cpu.frequency_mhz == 0.0
        assert cpu.load_avg is None
        assert "frequency_mhz" not in cpu.to_dict()


class TestReadCPUModel:
    def test_reads_model_name(self, tmp_path: Path):
        cpuinfo = tmp_path / "cpuinfo"
        cpuinfo.write_text(
            "processor\t: 0\nvendor_id\t: AuthenticAMD\nmodel name\t: AMD Ryzen 9 7950X\n"
        )
        assert _read_cpu_model(cpuinfo) == "AMD Ryzen 9 7950X"

    def test_falls_back_to_platform(self, tmp_path: Path):
        with patch("stats_agent.collector.platform.processor", return_value="x86_64"):
            assert _read_cpu_model(tmp_path / "missing") == "x86_64"
