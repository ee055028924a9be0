"""Global configuration — XDG paths, env vars, worker location, timings."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

WORKER_NAME = "TransAV1_CUI.exe" if sys.platform == "win32" else "TransAV1_CUI"


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "transrun"
    return Path.home() / ".config" / "transrun"


def _default_install_dir() -> Path:
    """Directory holding the launched entry point (the app's install dir)."""
    return Path(sys.argv[0]).resolve().parent


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (not a number)", name, raw)
        return default


@dataclass
class TransRunConfig:
    """Application-wide configuration."""

    config_dir: Path = field(default_factory=_default_config_dir)
    install_dir: Path = field(default_factory=_default_install_dir)
    worker_path: Path | None = None
    flush_interval: float = 0.3
    flush_threshold: int = 64 * 1024
    grace_period: float = 5.0
    kill_timeout: float = 2.0
    log_hard_cap: int = 1_000_000
    log_keep: int = 750_000
    verbose: bool = False

    @property
    def settings_path(self) -> Path:
        return self.config_dir / "settings.yaml"

    def resolve_worker(self) -> Path:
        """Where the worker executable is expected to live."""
        if self.worker_path is not None:
            return self.worker_path
        return self.install_dir / WORKER_NAME

    @classmethod
    def load(cls) -> TransRunConfig:
        """Load config from environment variables with XDG defaults."""
        config = cls()

        env_worker = os.environ.get("TRANSRUN_WORKER")
        if env_worker:
            config.worker_path = Path(env_worker)

        config.flush_interval = _env_float(
            "TRANSRUN_FLUSH_INTERVAL", config.flush_interval
        )
        config.grace_period = _env_float("TRANSRUN_GRACE_PERIOD", config.grace_period)

        return config
