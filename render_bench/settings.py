from __future__ import annotations

import os
from dataclasses import dataclass, field

from render_bench.errors import ConfigurationError
from render_bench.models import SUCCESS_MARKER


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _flag_env(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    data_dir: str = field(
        default_factory=lambda: os.getenv("BENCH_DATA_DIR", "data/runs")
    )
    poll_interval_sec: float = field(
        default_factory=lambda: _float_env("BENCH_POLL_INTERVAL", 0.5)
    )
    grace_period_sec: float = field(
        default_factory=lambda: _float_env("BENCH_GRACE_PERIOD", 2.0)
    )
    job_timeout_sec: float = field(
        default_factory=lambda: _float_env("BENCH_JOB_TIMEOUT", 120.0)
    )
    idle_warning_sec: float = field(
        default_factory=lambda: _float_env("BENCH_IDLE_WARNING", 30.0)
    )
    success_pattern: str = field(
        default_factory=lambda: os.getenv("BENCH_SUCCESS_PATTERN", SUCCESS_MARKER)
    )
    stderr_tail_lines: int = field(
        default_factory=lambda: _int_env("BENCH_STDERR_TAIL", 20)
    )
    redis_url: str = field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    use_fake_redis: bool = field(default_factory=lambda: _flag_env("FAKE_REDIS"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_logs: bool = field(default_factory=lambda: _flag_env("LOG_JSON"))


def get_settings() -> Settings:
    return Settings()
