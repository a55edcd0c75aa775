"""Local host metrics agent: samples CPU/RAM/GPU and serves recent history over HTTP."""

__version__ = "0.1.0"
