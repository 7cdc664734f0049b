from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_interval() -> int:
    # INTERVAL is the name the sidecar has always documented.
    if os.getenv("INTERVAL") is not None:
        return _env_int("INTERVAL", 15)
    return _env_int("PCR_POLL_INTERVAL_S", 15)


@dataclass(frozen=True)
class Settings:
    # Core
    poll_interval_s: int = _env_interval()
    config_dir: str = os.getenv("PCR_CONFIG_DIR", "/etc/nginx/conf.d")
    template_suffix: str = os.getenv("PCR_TEMPLATE_SUFFIX", ".j2")
    docker_base_url: str | None = os.getenv("DOCKER_HOST")

    # Proxy process
    pid_file: str = os.getenv("PCR_PID_FILE", "/run/nginx.pid")
    proxy_command: str = os.getenv("PCR_PROXY_COMMAND", "nginx")
    start_attempts: int = _env_int("PCR_START_ATTEMPTS", 10)
    start_poll_s: float = _env_float("PCR_START_POLL_S", 0.5)
    # Pause after reaping a child so a crash-looping proxy cannot spin the CPU.
    child_backoff_s: float = _env_float("PCR_CHILD_BACKOFF_S", 1.0)

    # Logging / event journal (optional)
    log_level: str = os.getenv("PCR_LOG_LEVEL", "INFO")
    log_name: str = os.getenv("PCR_LOG_NAME", "PCR")
    db_path: str | None = os.getenv("PCR_DB_PATH") or None
    log_to_stdout: bool = _env_bool("PCR_LOG_STDOUT", True)

    @property
    def interval(self) -> int:
        return max(1, int(self.poll_interval_s))


settings = Settings()
