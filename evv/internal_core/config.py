from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

CHAIN_SEED = "0" * 64


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value


@dataclass(frozen=True)
class EVVConfig:
    EVV_DEFAULT_GEOFENCE_RADIUS_METERS: float = 100.0
    EVV_VARIANCE_MAX_MINUTES: float = 15.0
    EVV_VARIANCE_MAX_PERCENT: float = 20.0
    EVV_MIN_VISIT_MINUTES: float = 5.0
    EVV_MAX_VISIT_MINUTES: float = 720.0
    EVV_MAX_CLOCK_SKEW_SECONDS: int = 300
    EVV_SAVE_MAX_ATTEMPTS: int = 3
    EVV_HMAC_SECRET: Optional[str] = None
    EVV_DEFAULT_TIMEZONE: str = "UTC"
    EVV_LOG_LEVEL: str = "INFO"

    @property
    def signing_enabled(self) -> bool:
        return bool(self.EVV_HMAC_SECRET)


def load_config() -> EVVConfig:
    cfg = EVVConfig(
        EVV_DEFAULT_GEOFENCE_RADIUS_METERS=_getenv_float("EVV_DEFAULT_GEOFENCE_RADIUS_METERS", 100.0),
        EVV_VARIANCE_MAX_MINUTES=_getenv_float("EVV_VARIANCE_MAX_MINUTES", 15.0),
        EVV_VARIANCE_MAX_PERCENT=_getenv_float("EVV_VARIANCE_MAX_PERCENT", 20.0),
        EVV_MIN_VISIT_MINUTES=_getenv_float("EVV_MIN_VISIT_MINUTES", 5.0),
        EVV_MAX_VISIT_MINUTES=_getenv_float("EVV_MAX_VISIT_MINUTES", 720.0),
        EVV_MAX_CLOCK_SKEW_SECONDS=_getenv_int("EVV_MAX_CLOCK_SKEW_SECONDS", 300),
        EVV_SAVE_MAX_ATTEMPTS=_getenv_int("EVV_SAVE_MAX_ATTEMPTS", 3),
        EVV_HMAC_SECRET=_getenv_opt_str("EVV_HMAC_SECRET"),
        EVV_DEFAULT_TIMEZONE=_getenv_str("EVV_DEFAULT_TIMEZONE", "UTC"),
        EVV_LOG_LEVEL=_getenv_str("EVV_LOG_LEVEL", "INFO"),
    )
    if cfg.EVV_DEFAULT_GEOFENCE_RADIUS_METERS <= 0:
        raise ValueError("EVV_DEFAULT_GEOFENCE_RADIUS_METERS must be > 0")
    if cfg.EVV_SAVE_MAX_ATTEMPTS < 1:
        raise ValueError("EVV_SAVE_MAX_ATTEMPTS must be >= 1")
    return cfg
