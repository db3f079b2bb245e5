"""Environment-backed settings for the worker process."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

ENV_PREFIX = "PAGESMITH_"


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(ENV_PREFIX + name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    value = environ.get(ENV_PREFIX + name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = environ.get(ENV_PREFIX + name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on", "y"}


def _env_str(environ: Mapping[str, str], name: str, default: str) -> str:
    value = environ.get(ENV_PREFIX + name)
    return value.strip() if value else default


@dataclass
class WorkerSettings:
    """Runtime configuration; every field maps to a ``PAGESMITH_*`` variable."""

    convex_url: Optional[str] = None
    worker_id: str = "worker-local"
    worker_token: Optional[str] = None
    poll_interval_seconds: float = 5.0
    heartbeat_seconds: float = 25.0
    uploads_dir: Path = Path("uploads")
    downloads_dir: Path = Path("downloads")
    download_url_prefix: str = "/downloads"
    max_upload_bytes: int = 50 * 1024 * 1024
    retention_seconds: float = 3600.0
    cleanup_interval_seconds: float = 1800.0
    strict_ranges: bool = False
    max_split_parts: int = 500
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WorkerSettings":
        """
        Build settings from environment variables.

        Malformed numeric values fall back to their defaults rather than
        failing start-up.

        Parameters:
            environ (Mapping[str, str] | None): Source mapping; defaults to ``os.environ``.

        Returns:
            WorkerSettings: The resolved configuration.
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            convex_url=env.get(ENV_PREFIX + "CONVEX_URL") or None,
            worker_id=_env_str(env, "WORKER_ID", defaults.worker_id),
            worker_token=env.get(ENV_PREFIX + "WORKER_TOKEN") or None,
            poll_interval_seconds=_env_float(
                env, "POLL_INTERVAL", defaults.poll_interval_seconds
            ),
            heartbeat_seconds=_env_float(
                env, "WORKER_HEARTBEAT_SECONDS", defaults.heartbeat_seconds
            ),
            uploads_dir=Path(_env_str(env, "UPLOADS_DIR", str(defaults.uploads_dir))),
            downloads_dir=Path(
                _env_str(env, "DOWNLOADS_DIR", str(defaults.downloads_dir))
            ),
            download_url_prefix=_env_str(
                env, "DOWNLOAD_URL_PREFIX", defaults.download_url_prefix
            ),
            max_upload_bytes=_env_int(env, "MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
            retention_seconds=_env_float(
                env, "RETENTION_SECONDS", defaults.retention_seconds
            ),
            cleanup_interval_seconds=_env_float(
                env, "CLEANUP_INTERVAL_SECONDS", defaults.cleanup_interval_seconds
            ),
            strict_ranges=_env_bool(env, "STRICT_RANGES", defaults.strict_ranges),
            max_split_parts=max(1, _env_int(env, "MAX_SPLIT_PARTS", defaults.max_split_parts)),
            log_level=_env_str(env, "LOG_LEVEL", defaults.log_level).upper(),
            log_file=env.get(ENV_PREFIX + "LOG_FILE") or None,
        )
