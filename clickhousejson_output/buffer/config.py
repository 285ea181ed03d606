"""Buffer settings for the in-process host."""

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from clickhousejson_output.clickhouse.config import ConfigurationError, parse_bool

DEFAULT_TIMEKEY = 60 * 60 * 24


def _parse_keys(value: Any) -> list[str]:
    if isinstance(value, str):
        return [k.strip() for k in value.strip().strip("[]").split(",") if k.strip()]
    return [str(k) for k in value]


@dataclass
class BufferConfig:
    """Chunking, flush timing and retry settings."""

    type: str = "file"
    path: str = "buffer"
    chunk_keys: list[str] = field(default_factory=lambda: ["time"])
    timekey: int = DEFAULT_TIMEKEY
    timekey_wait: int = 600
    timekey_use_utc: bool = False
    flush_at_shutdown: bool = True
    flush_interval: float = 60.0
    flush_thread_interval: float = 1.0
    chunk_limit_size: int = 8 * 1024 * 1024
    retry_wait: float = 1.0
    retry_max_interval: float = 3600.0
    retry_max_times: Optional[int] = None

    @classmethod
    def from_env(cls) -> "BufferConfig":
        """Create config from BUFFER_* environment variables."""
        max_times = os.getenv("BUFFER_RETRY_MAX_TIMES")
        return cls(
            type=os.getenv("BUFFER_TYPE", "file"),
            path=os.getenv("BUFFER_PATH", "buffer"),
            chunk_keys=_parse_keys(os.getenv("BUFFER_CHUNK_KEYS", "time")),
            timekey=int(os.getenv("BUFFER_TIMEKEY", str(DEFAULT_TIMEKEY))),
            timekey_wait=int(os.getenv("BUFFER_TIMEKEY_WAIT", "600")),
            timekey_use_utc=parse_bool(os.getenv("BUFFER_TIMEKEY_USE_UTC", "false")),
            flush_at_shutdown=parse_bool(os.getenv("BUFFER_FLUSH_AT_SHUTDOWN", "true")),
            flush_interval=float(os.getenv("BUFFER_FLUSH_INTERVAL", "60")),
            chunk_limit_size=int(os.getenv("BUFFER_CHUNK_LIMIT_SIZE", str(8 * 1024 * 1024))),
            retry_wait=float(os.getenv("BUFFER_RETRY_WAIT", "1.0")),
            retry_max_interval=float(os.getenv("BUFFER_RETRY_MAX_INTERVAL", "3600")),
            retry_max_times=int(max_times) if max_times else None,
        )

    @classmethod
    def from_dict(cls, conf: Mapping[str, Any]) -> "BufferConfig":
        """Create config from a flat option mapping; "@type" is accepted for type."""
        config = cls()
        if "@type" in conf or "type" in conf:
            config.type = str(conf.get("@type", conf.get("type")))
        if "path" in conf:
            config.path = str(conf["path"])
        if "chunk_keys" in conf:
            config.chunk_keys = _parse_keys(conf["chunk_keys"])
        for name in ("timekey", "timekey_wait", "chunk_limit_size"):
            if name in conf:
                setattr(config, name, int(conf[name]))
        for name in ("flush_interval", "flush_thread_interval", "retry_wait", "retry_max_interval"):
            if name in conf:
                setattr(config, name, float(conf[name]))
        for name in ("timekey_use_utc", "flush_at_shutdown"):
            if name in conf:
                setattr(config, name, parse_bool(conf[name]))
        if conf.get("retry_max_times") is not None:
            config.retry_max_times = int(conf["retry_max_times"])
        return config

    def validate(self) -> None:
        if self.type not in ("file", "memory"):
            raise ConfigurationError(f"unknown buffer type: {self.type!r}")
        if self.type == "file" and not self.path:
            raise ConfigurationError("'path' is required for the file buffer")
        if "time" in self.chunk_keys and self.timekey <= 0:
            raise ConfigurationError("'timekey' must be positive")
        if self.chunk_limit_size <= 0:
            raise ConfigurationError("'chunk_limit_size' must be positive")
