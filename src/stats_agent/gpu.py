"""GPU collectors backed by vendor command-line tools.

detect_gpu() probes once at startup for nvidia-smi, then rocm-smi, and
returns the matching collector (or None). There is no re-selection while
the agent runs.
"""

import csv
import io
import json
import re
import shutil
import subprocess
import sys

import structlog

from stats_agent.collector import MB, CollectionError
from stats_agent.sample import GPUMetrics

log = structlog.get_logger()

NVIDIA_SMI = "nvidia-smi"
ROCM_SMI = "rocm-smi"

NVIDIA_QUERY = [
    NVIDIA_SMI,
    "--query-gpu=name,utilization.gpu,temperature.gpu,memory.total,memory.used",
    "--format=csv,noheader,nounits",
]
ROCM_QUERY = [ROCM_SMI, "--showuse", "--showtemp", "--showmeminfo", "vram"]
WMI_QUERY = [
    "powershell",
    "-Command",
    "Get-WmiObject Win32_VideoController | Select-Object Name, AdapterRAM | ConvertTo-Json",
]

_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)")
_WMI_NAME_RE = re.compile(r'"Name":\s*"([^"]+)"')


class GPUError(CollectionError):
    """A GPU tool failed or produced unparseable output."""


def _run(cmd: list[str], timeout: float) -> str:
    """Run a vendor tool and return its stdout.

    Raises:
        GPUError: If the tool is missing, times out, or exits non-zero.
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except FileNotFoundError as e:
        raise GPUError(f"{cmd[0]} not found") from e
    except subprocess.TimeoutExpired as e:
        raise GPUError(f"{cmd[0]} timed out after {timeout}s") from e
    except subprocess.CalledProcessError as e:
        raise GPUError(f"{cmd[0]} failed with exit code {e.returncode}") from e
    return result.stdout


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def _to_int(value: str) -> int:
    try:
        return int(float(value))
    except ValueError:
        return 0


def parse_nvidia_smi(output: str) -> GPUMetrics:
    """Parse nvidia-smi CSV output (noheader, nounits); uses the first GPU.

    Unparseable numeric fields (e.g. "[N/A]") read as zero.

    Raises:
        GPUError: If there are no rows or the first row has fewer than 5 fields.
    """
    rows = [row for row in csv.reader(io.StringIO(output), skipinitialspace=True) if row]
    if not rows:
        raise GPUError("failed to parse nvidia-smi output")

    record = rows[0]
    if len(record) < 5:
        raise GPUError("unexpected nvidia-smi output format")

    return GPUMetrics(
        vendor="nvidia",
        model=record[0].strip(),
        util=_to_float(record[1]) / 100.0,
        temperature_c=_to_float(record[2]),
        vram_total_mb=_to_int(record[3]),
        vram_used_mb=_to_int(record[4]),
    )


def _value_after_label(line: str) -> float | None:
    """Return the first number after the last colon of a rocm-smi line."""
    if m := _NUMBER_RE.search(line.rsplit(":", 1)[-1]):
        return float(m.group(1))
    return None


def parse_rocm_smi(output: str) -> GPUMetrics:
    """Parse rocm-smi --showuse --showtemp --showmeminfo vram output.

    Uses the first reading of each kind (first GPU). VRAM labelled "(B)"
    is converted from bytes to MB. Lines without a known label are ignored
    and missing values stay zero.
    """
    util: float | None = None
    temperature: float | None = None
    vram_total: int | None = None
    vram_used: int | None = None

    for line in output.splitlines():
        value = _value_after_label(line)
        if value is None:
            continue
        scale = MB if "(B)" in line else 1
        if "GPU use" in line and util is None:
            util = value / 100.0
        elif "Temperature" in line and temperature is None:
            temperature = value
        elif "VRAM" in line and "Used" in line:
            # "VRAM Total Used Memory" also contains "VRAM Total"
            if vram_used is None:
                vram_used = int(value) // scale
        elif "VRAM Total" in line and vram_total is None:
            vram_total = int(value) // scale

    return GPUMetrics(
        vendor="amd",
        model="",
        util=util or 0.0,
        temperature_c=temperature or 0.0,
        vram_total_mb=vram_total or 0,
        vram_used_mb=vram_used or 0,
    )


def parse_wmi_video_controller(output: str) -> GPUMetrics:
    """Parse PowerShell Win32_VideoController JSON; only the model is available."""
    model = "AMD GPU"
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        data = None

    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict) and data.get("Name"):
        model = str(data["Name"])
    elif m := _WMI_NAME_RE.search(output):
        model = m.group(1)

    return GPUMetrics(vendor="amd", model=model, util=0.0)


class NvidiaCollector:
    """GPU metrics from nvidia-smi."""

    vendor = "nvidia"

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    def collect_gpu(self) -> GPUMetrics:
        return parse_nvidia_smi(_run(NVIDIA_QUERY, self.timeout))


class AMDCollector:
    """GPU metrics from rocm-smi (Linux) or WMI (Windows, model name only)."""

    vendor = "amd"

    def __init__(self, timeout: float = 5.0, platform: str = sys.platform) -> None:
        self.timeout = timeout
        self.platform = platform

    def collect_gpu(self) -> GPUMetrics:
        if self.platform == "win32":
            return parse_wmi_video_controller(_run(WMI_QUERY, self.timeout))
        return parse_rocm_smi(_run(ROCM_QUERY, self.timeout))


def detect_gpu(timeout: float = 5.0) -> NvidiaCollector | AMDCollector | None:
    """Return a collector for the first GPU tool found on PATH, or None."""
    if shutil.which(NVIDIA_SMI):
        log.info("gpu_detected", vendor="nvidia")
        return NvidiaCollector(timeout=timeout)
    if shutil.which(ROCM_SMI):
        log.info("gpu_detected", vendor="amd")
        return AMDCollector(timeout=timeout)
    log.info("gpu_not_detected")
    return None
