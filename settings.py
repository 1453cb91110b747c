from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


_DATABASE_URL_ENV = "SENSOR_DATABASE_URL"
_BROKER_URL_ENV = "SENSOR_BROKER_URL"
_BROKER_BOOTSTRAP_ENV = "SENSOR_BROKER_BOOTSTRAP"
_BROKER_SEND_TIMEOUT_ENV = "SENSOR_BROKER_SEND_TIMEOUT_SECONDS"
_CONFIG_TOPIC_ENV = "SENSOR_CONFIG_TOPIC"
_BROKER_MAX_LEN_ENV = "SENSOR_BROKER_MAX_LEN"
_READY_ATTEMPTS_ENV = "SENSOR_STORE_READY_ATTEMPTS"
_READY_BACKOFF_ENV = "SENSOR_STORE_READY_BACKOFF_SECONDS"
_READY_FAIL_FAST_ENV = "SENSOR_STORE_READY_FAIL_FAST"
_SEED_DEFAULTS_ENV = "SENSOR_SEED_DEFAULTS"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    broker_url: str
    broker_bootstrap: str
    broker_send_timeout_seconds: float
    config_topic: str
    broker_max_len: int
    ready_max_attempts: int
    ready_backoff_seconds: float
    ready_fail_fast: bool
    seed_defaults: bool
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_non_negative_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed >= 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = _read_non_negative_float(name, default)
    return value if value > 0 else default


def _read_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip().lower()
    if candidate in _TRUE_VALUES:
        return True
    if candidate in _FALSE_VALUES:
        return False
    return default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=_read_str_env(_DATABASE_URL_ENV, "sqlite:///./tmp/sensors.db"),
        broker_url=_read_str_env(_BROKER_URL_ENV, ""),
        broker_bootstrap=_read_str_env(_BROKER_BOOTSTRAP_ENV, "localhost:9092"),
        broker_send_timeout_seconds=_read_positive_float(_BROKER_SEND_TIMEOUT_ENV, 10.0),
        config_topic=_read_str_env(_CONFIG_TOPIC_ENV, "sensor-config-events"),
        broker_max_len=_read_positive_int(_BROKER_MAX_LEN_ENV, 10000),
        ready_max_attempts=_read_positive_int(_READY_ATTEMPTS_ENV, 30),
        ready_backoff_seconds=_read_non_negative_float(_READY_BACKOFF_ENV, 1.0),
        ready_fail_fast=_read_bool(_READY_FAIL_FAST_ENV, True),
        seed_defaults=_read_bool(_SEED_DEFAULTS_ENV, True),
        log_level=_read_log_level("INFO"),
    )
