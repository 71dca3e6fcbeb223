from __future__ import annotations

import logging
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


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("RRC_DB_PATH", "rrc.db")
    record_backend: str = os.getenv("RRC_RECORD_BACKEND", "kube")  # kube|sqlite
    namespace: str | None = os.getenv("RRC_NAMESPACE")
    resync_interval_s: int = _env_int("RRC_RESYNC_INTERVAL_S", 30)
    workers: int = _env_int("RRC_WORKERS", 1)
    start_scheduler: bool = _env_bool("RRC_START_SCHEDULER", True)

    # Identity written into restart markers
    controller_identity: str = os.getenv("RRC_CONTROLLER_IDENTITY", "rolling-restart-controller")
    api_group: str = os.getenv("RRC_API_GROUP", "rrc.example.com")
    api_version: str = os.getenv("RRC_API_VERSION", "v1alpha1")

    # Conflict retry (mirrors client-go's DefaultRetry)
    conflict_retry_attempts: int = _env_int("RRC_CONFLICT_RETRY_ATTEMPTS", 5)
    conflict_retry_delay_ms: int = _env_int("RRC_CONFLICT_RETRY_DELAY_MS", 10)
    conflict_retry_factor: float = _env_float("RRC_CONFLICT_RETRY_FACTOR", 1.0)
    conflict_retry_jitter: float = _env_float("RRC_CONFLICT_RETRY_JITTER", 0.1)

    # Scheduler backoff after a failed reconcile
    error_backoff_base_s: float = _env_float("RRC_ERROR_BACKOFF_BASE_S", 1.0)
    error_backoff_max_s: float = _env_float("RRC_ERROR_BACKOFF_MAX_S", 300.0)

    log_level: str = os.getenv("RRC_LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
