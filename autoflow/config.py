"""Runtime settings with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass

_DEFAULT_STORE_DIR = os.path.join(os.path.expanduser("~"), ".autoflow")

# Scheduler tick (seconds). Coarse-grained: cron precision is one minute.
DEFAULT_TICK_INTERVAL = 60.0

# Recorder liveness polling (seconds)
DEFAULT_LIVENESS_INTERVAL = 0.5

# Retry backoff base unit (milliseconds)
DEFAULT_RETRY_BASE_MS = 1000


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Settings:
    store_dir: str = _DEFAULT_STORE_DIR
    tick_interval: float = DEFAULT_TICK_INTERVAL
    liveness_interval: float = DEFAULT_LIVENESS_INTERVAL
    retry_base_ms: int = DEFAULT_RETRY_BASE_MS
    headless: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``AUTOFLOW_*`` environment variables."""
        return cls(
            store_dir=os.environ.get("AUTOFLOW_STORE_DIR") or _DEFAULT_STORE_DIR,
            tick_interval=_env_float("AUTOFLOW_TICK_INTERVAL", DEFAULT_TICK_INTERVAL),
            liveness_interval=_env_float(
                "AUTOFLOW_LIVENESS_INTERVAL", DEFAULT_LIVENESS_INTERVAL
            ),
            retry_base_ms=int(_env_float("AUTOFLOW_RETRY_BASE_MS", DEFAULT_RETRY_BASE_MS)),
            headless=_env_bool("AUTOFLOW_HEADLESS", False),
        )
