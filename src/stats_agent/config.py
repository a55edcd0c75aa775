"""Configuration system for stats-agent."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Environment variables honoured on top of the config file
ENV_PORT = "PORT"
ENV_INTERVAL_SEC = "INTERVAL_SEC"
ENV_HISTORY_SIZE = "HISTORY_SIZE"

DEFAULT_HISTORY_WINDOW = 300  # Seconds returned by /metrics/history without ?seconds=


@dataclass
class ServerConfig:
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8080
    web_dir: str = ""  # Static UI directory served under /ui/ (empty = disabled)


@dataclass
class SamplingConfig:
    """Sampling loop configuration."""

    interval_sec: int = 30  # Seconds between samples
    history_size: int = 720  # Ring buffer capacity (720 x 30s = 6 hours)
    gpu_timeout: float = 5.0  # Seconds before nvidia-smi/rocm-smi is abandoned
    heartbeat_ticks: int = 20  # Log heartbeat every N ticks (~10 min at 30s)


@dataclass
class LoggingConfig:
    """Log output configuration."""

    level: str = "info"
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def _env_int(env: Mapping[str, str], key: str) -> int | None:
    """Read an integer from the environment, ignoring empty or non-numeric values."""
    value = env.get(key, "")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass
class Config:
    """Main configuration container."""

    server: ServerConfig = field(default_factory=ServerConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "stats-agent"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "stats-agent"

    @property
    def log_path(self) -> Path:
        """Agent log path (JSON Lines)."""
        return self.state_dir / "agent.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("server", "sampling", "logging"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None, env: Mapping[str, str] | None = None) -> "Config":
        """Load config from TOML file, then apply environment overrides.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() on a missing file are identical (modulo environment).
        PORT, INTERVAL_SEC and HISTORY_SIZE override the file when set to
        an integer; other values are ignored.

        Raises:
            ValueError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        env = os.environ if env is None else env

        data: dict = {}
        if path.exists():
            try:
                with open(path) as f:
                    data = tomlkit.load(f).unwrap()
            except tomlkit.exceptions.TOMLKitError as e:
                raise ValueError(f"Failed to parse config file {path}: {e}") from e

        config = cls(
            server=_load_server_config(data.get("server", {})),
            sampling=_load_sampling_config(data.get("sampling", {})),
            logging=_load_logging_config(data.get("logging", {})),
        )

        port = _env_int(env, ENV_PORT)
        if port is not None:
            config.server.port = port
        interval = _env_int(env, ENV_INTERVAL_SEC)
        if interval is not None:
            config.sampling.interval_sec = interval
        history_size = _env_int(env, ENV_HISTORY_SIZE)
        if history_size is not None:
            config.sampling.history_size = history_size

        config.validate()
        return config

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ValueError: On the first invalid value found.
        """
        if not 0 < self.server.port < 65536:
            raise ValueError(f"port must be in 1-65535, got {self.server.port}")
        if self.sampling.interval_sec < 1:
            raise ValueError(f"interval_sec must be >= 1, got {self.sampling.interval_sec}")
        if self.sampling.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.sampling.history_size}")
        if self.sampling.gpu_timeout <= 0:
            raise ValueError(f"gpu_timeout must be > 0, got {self.sampling.gpu_timeout}")
        if self.sampling.heartbeat_ticks < 1:
            raise ValueError(f"heartbeat_ticks must be >= 1, got {self.sampling.heartbeat_ticks}")
        valid_levels = {"debug", "info", "warning", "error"}
        if self.logging.level not in valid_levels:
            raise ValueError(
                f"Invalid logging level: {self.logging.level!r}. Must be one of {valid_levels}"
            )


def _load_server_config(data: dict) -> ServerConfig:
    """Load server config from TOML data, using dataclass defaults for missing fields."""
    d = ServerConfig()
    return ServerConfig(
        host=data.get("host", d.host),
        port=data.get("port", d.port),
        web_dir=data.get("web_dir", d.web_dir),
    )


def _load_sampling_config(data: dict) -> SamplingConfig:
    """Load sampling config from TOML data."""
    d = SamplingConfig()
    return SamplingConfig(
        interval_sec=data.get("interval_sec", d.interval_sec),
        history_size=data.get("history_size", d.history_size),
        gpu_timeout=data.get("gpu_timeout", d.gpu_timeout),
        heartbeat_ticks=data.get("heartbeat_ticks", d.heartbeat_ticks),
    )


def _load_logging_config(data: dict) -> LoggingConfig:
    """Load logging config from TOML data."""
    d = LoggingConfig()
    return LoggingConfig(
        level=data.get("level", d.level),
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )
