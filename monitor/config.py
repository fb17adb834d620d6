"""Run settings, read from the environment.

CLI flags override whatever the environment says (see monitor/main.py).
"""

import os
from dataclasses import dataclass

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _int(env, name, default):
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env, name, default):
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class Settings:
    log_level: str = "INFO"
    # Max event logs scanned per run; None means all of them.
    scan_limit: int | None = None
    # Sources processed concurrently.
    batch_size: int = 5
    correlation_window_hours: float = 2
    high_risk_threshold: float = 10
    geoip_db_path: str | None = None
    risk_config_path: str | None = None
    metrics_textfile: str | None = None

    def __post_init__(self):
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")
        if self.batch_size < 1:
            raise ValueError("BATCH_SIZE must be at least 1")
        if self.scan_limit is not None and self.scan_limit < 1:
            raise ValueError("SCAN_LIMIT must be positive")
        if self.correlation_window_hours <= 0:
            raise ValueError("CORRELATION_WINDOW_HOURS must be positive")

    @classmethod
    def from_env(cls, env=None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            log_level=env.get("LOG_LEVEL") or "INFO",
            scan_limit=_int(env, "SCAN_LIMIT", None),
            batch_size=_int(env, "BATCH_SIZE", 5),
            correlation_window_hours=_float(env, "CORRELATION_WINDOW_HOURS", 2),
            high_risk_threshold=_float(env, "HIGH_RISK_THRESHOLD", 10),
            geoip_db_path=env.get("GEOIP_DB_PATH") or None,
            risk_config_path=env.get("RISK_CONFIG_PATH") or None,
            metrics_textfile=env.get("METRICS_TEXTFILE") or None,
        )
