"""Sample schema: one immutable point-in-time snapshot of host metrics.

Sample is THE canonical data schema passed from collectors to the ring
buffer and from the ring buffer to the HTTP layer. Optional fields are
omitted from the serialized form rather than emitted as null.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class CPUMetrics:
    """CPU usage and topology."""

    usage: float  # 0.0-1.0
    cores: int
    threads: int
    model: str = ""
    load_avg: tuple[float, float, float] | None = None  # 1/5/15 min, Unix only
    frequency_mhz: float = 0.0

    def to_dict(self) -> dict:
        """Serialize to a dictionary, omitting unset optional fields."""
        data: dict = {
            "usage": self.usage,
            "cores": self.cores,
            "threads": self.threads,
        }
        if self.model:
            data["model"] = self.model
        if self.load_avg is not None:
            data["load_avg"] = list(self.load_avg)
        if self.frequency_mhz:
            data["frequency_mhz"] = self.frequency_mhz
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CPUMetrics":
        """Deserialize from a dictionary."""
        load_avg = data.get("load_avg")
        return cls(
            usage=data["usage"],
            cores=data["cores"],
            threads=data["threads"],
            model=data.get("model", ""),
            load_avg=tuple(load_avg) if load_avg is not None else None,
            frequency_mhz=data.get("frequency_mhz", 0.0),
        )


@dataclass(frozen=True)
class RAMMetrics:
    """Physical memory in MB.

    free_mb is the OS "available" figure (free + reclaimable caches), so
    total_mb is roughly used_mb + free_mb.
    """

    total_mb: int
    used_mb: int
    free_mb: int
    usage: float  # 0.0-1.0

    def to_dict(self) -> dict:
        """Serialize to a dictionary."""
        return {
            "total_mb": self.total_mb,
            "used_mb": self.used_mb,
            "free_mb": self.free_mb,
            "usage": self.usage,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RAMMetrics":
        """Deserialize from a dictionary."""
        return cls(
            total_mb=data["total_mb"],
            used_mb=data["used_mb"],
            free_mb=data["free_mb"],
            usage=data["usage"],
        )


@dataclass(frozen=True)
class GPUMetrics:
    """GPU utilization for the first detected device."""

    vendor: str  # "nvidia" or "amd"
    model: str
    util: float  # 0.0-1.0
    temperature_c: float = 0.0
    vram_total_mb: int = 0
    vram_used_mb: int = 0

    def to_dict(self) -> dict:
        """Serialize to a dictionary, omitting unset optional fields."""
        data: dict = {
            "vendor": self.vendor,
            "model": self.model,
            "util": self.util,
        }
        if self.temperature_c:
            data["temperature_c"] = self.temperature_c
        if self.vram_total_mb:
            data["vram_total_mb"] = self.vram_total_mb
        if self.vram_used_mb:
            data["vram_used_mb"] = self.vram_used_mb
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "GPUMetrics":
        """Deserialize from a dictionary."""
        return cls(
            vendor=data["vendor"],
            model=data.get("model", ""),
            util=data["util"],
            temperature_c=data.get("temperature_c", 0.0),
            vram_total_mb=data.get("vram_total_mb", 0),
            vram_used_mb=data.get("vram_used_mb", 0),
        )


@dataclass(frozen=True)
class Sample:
    """Complete snapshot of host metrics at one point in time.

    timestamp is the only ordering and windowing key used by the ring buffer.
    """

    timestamp: datetime
    cpu: CPUMetrics
    ram: RAMMetrics
    gpu: GPUMetrics | None = None

    def to_dict(self) -> dict:
        """Serialize to a JSON-ready dictionary (gpu omitted when absent)."""
        data = {
            "timestamp": self.timestamp.isoformat(),
            "cpu": self.cpu.to_dict(),
            "ram": self.ram.to_dict(),
        }
        if self.gpu is not None:
            data["gpu"] = self.gpu.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Sample":
        """Deserialize from a dictionary produced by to_dict()."""
        gpu = data.get("gpu")
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            cpu=CPUMetrics.from_dict(data["cpu"]),
            ram=RAMMetrics.from_dict(data["ram"]),
            gpu=GPUMetrics.from_dict(gpu) if gpu is not None else None,
        )

    def summary(self) -> str:
        """One-line usage summary, e.g. 'CPU=12.5%, RAM=40.1%, GPU=3.0%'."""
        parts = [f"CPU={self.cpu.usage * 100:.1f}%", f"RAM={self.ram.usage * 100:.1f}%"]
        if self.gpu is not None:
            parts.append(f"GPU={self.gpu.util * 100:.1f}%")
        return ", ".join(parts)
