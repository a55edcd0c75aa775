"""Tests for GPU collectors and vendor tool output parsing."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from stats_agent.collector import CollectionError
from stats_agent.gpu import (
    NVIDIA_QUERY,
    ROCM_QUERY,
    WMI_QUERY,
    AMDCollector,
    GPUError,
    NvidiaCollector,
    _run,
    detect_gpu,
    parse_nvidia_smi,
    parse_rocm_smi,
    parse_wmi_video_controller,
)

NVIDIA_OUTPUT = "NVIDIA GeForce RTX 4090, 37, 61, 24564, 2048\n"

ROCM_OUTPUT = """\
============================ ROCm System Management Interface ============================
=================================== % time GPU is busy ===================================
GPU[0]          : GPU use (%): 23
GPU[1]          : GPU use (%): 90
================================== Temperature ===========================================
GPU[0]          : Temperature (Sensor edge) (C): 48.0
GPU[0]          : Temperature (Sensor junction) (C): 52.0
=================================== Memory Usage (Bytes) =================================
GPU[0]          : VRAM Total Memory (B): 17163091968
GPU[0]          : VRAM Total Used Memory (B): 1073741824
==========================================================================================
"""


class TestParseNvidiaSmi:
    def test_parses_first_gpu(self):
        gpu = parse_nvidia_smi(NVIDIA_OUTPUT + "Tesla T4, 90, 70, 15360, 100\n")

        assert gpu.vendor == "nvidia"
        assert gpu.model == "NVIDIA GeForce RTX 4090"
        assert gpu.util == pytest.approx(0.37)
        assert gpu.temperature_c == 61.0
        assert gpu.vram_total_mb == 24564
        assert gpu.vram_used_mb == 2048

    def test_unavailable_fields_read_as_zero(self):
        gpu = parse_nvidia_smi("Some GPU, [N/A], [N/A], 8192, [N/A]\n")
        assert gpu.util == 0.0
        assert gpu.temperature_c == 0.0
        assert gpu.vram_total_mb == 8192
        assert gpu.vram_used_mb == 0

    def test_empty_output_raises(self):
        with pytest.raises(GPUError, match="parse"):
            parse_nvidia_smi("")

    def test_short_row_raises(self):
        with pytest.raises(GPUError, match="format"):
            parse_nvidia_smi("GPU, 10, 50\n")


class TestParseRocmSmi:
    def test_parses_first_reading_of_each_kind(self):
        gpu = parse_rocm_smi(ROCM_OUTPUT)

        assert gpu.vendor == "amd"
        assert gpu.util == pytest.approx(0.23)
        assert gpu.temperature_c == 48.0
        assert gpu.vram_total_mb == 17163091968 // (1024 * 1024)
        assert gpu.vram_used_mb == 1024

    def test_unrecognised_output_yields_zeros(self):
        gpu = parse_rocm_smi("nothing useful here\n")
        assert gpu.util == 0.0
        assert gpu.temperature_c == 0.0
        assert gpu.vram_total_mb == 0


class TestParseWmi:
    def test_single_controller_object(self):
        gpu = parse_wmi_video_controller('{"Name": "AMD Radeon RX 6800", "AdapterRAM": 4293918720}')
        assert gpu.model == "AMD Radeon RX 6800"
        assert gpu.vendor == "amd"
        assert gpu.util == 0.0

    def test_controller_list_uses_first(self):
        output = '[{"Name": "AMD Radeon RX 6800"}, {"Name": "Microsoft Basic Display"}]'
        assert parse_wmi_video_controller(output).model == "AMD Radeon RX 6800"

    def test_malformed_json_falls_back_to_regex(self):
        assert parse_wmi_video_controller('junk "Name": "Radeon Pro" junk').model == "Radeon Pro"

    def test_no_name_uses_default(self):
        assert parse_wmi_video_controller("").model == "AMD GPU"


class TestRun:
    def test_returns_stdout(self):
        completed = subprocess.CompletedProcess(args=["x"], returncode=0, stdout="ok\n")
        with patch("stats_agent.gpu.subprocess.run", return_value=completed) as mock_run:
            assert _run(["nvidia-smi"], timeout=2.0) == "ok\n"
        assert mock_run.call_args.kwargs["timeout"] == 2.0

    @pytest.mark.parametrize(
        ("error", "message"),
        [
            (FileNotFoundError(), "not found"),
            (subprocess.TimeoutExpired(cmd="nvidia-smi", timeout=2.0), "timed out"),
            (subprocess.CalledProcessError(returncode=9, cmd="nvidia-smi"), "exit code 9"),
        ],
    )
    def test_failures_become_gpu_error(self, error, message):
        with patch("stats_agent.gpu.subprocess.run", side_effect=error):
            with pytest.raises(GPUError, match=message):
                _run(["nvidia-smi"], timeout=2.0)

    def test_gpu_error_is_collection_error(self):
        assert issubclass(GPUError, CollectionError)


class TestCollectors:
    def test_nvidia_collector_runs_query(self):
        with patch("stats_agent.gpu._run", return_value=NVIDIA_OUTPUT) as mock_run:
            gpu = NvidiaCollector(timeout=3.0).collect_gpu()

        mock_run.assert_called_once_with(NVIDIA_QUERY, 3.0)
        assert gpu.model == "NVIDIA GeForce RTX 4090"

    def test_amd_collector_linux_uses_rocm_smi(self):
        with patch("stats_agent.gpu._run", return_value=ROCM_OUTPUT) as mock_run:
            gpu = AMDCollector(timeout=3.0, platform="linux").collect_gpu()

        mock_run.assert_called_once_with(ROCM_QUERY, 3.0)
        assert gpu.util == pytest.approx(0.23)

    def test_amd_collector_windows_uses_wmi(self):
        with patch("stats_agent.gpu._run", return_value='{"Name": "Radeon"}') as mock_run:
            gpu = AMDCollector(platform="win32").collect_gpu()

        mock_run.assert_called_once_with(WMI_QUERY, 5.0)
        assert gpu.model == "Radeon"


class TestDetectGpu:
    def test_prefers_nvidia(self):
        with patch("stats_agent.gpu.shutil.which", return_value="/usr/bin/tool"):
            collector = detect_gpu(timeout=2.0)

        assert isinstance(collector, NvidiaCollector)
        assert collector.timeout == 2.0

    def test_falls_back_to_rocm(self):
        which = MagicMock(side_effect=lambda name: "/opt/rocm/bin/rocm-smi" if name == "rocm-smi" else None)
        with patch("stats_agent.gpu.shutil.which", which):
            collector = detect_gpu()

        assert isinstance(collector, AMDCollector)
        assert collector.vendor == "amd"

    def test_none_when_no_tools(self):
        with patch("stats_agent.gpu.shutil.which", return_value=None):
            assert detect_gpu() is None
