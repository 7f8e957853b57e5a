from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


_RAINFALL_COLLECTION_ENV = "RAINFALL_COLLECTION_NAME"
_SUMMARY_COLLECTION_ENV = "SUMMARY_COLLECTION_NAME"
_STORE_ROOT_ENV = "DOCUMENT_STORE_ROOT_PATH"
_WORKER_COUNT_ENV = "TRIGGER_WORKER_COUNT"
_TIMEZONE_ENV = "BUCKET_TIMEZONE"
_CONCURRENCY_ENV = "AGGREGATION_CONCURRENCY"
_CONFLICT_RETRIES_ENV = "AGGREGATION_MAX_CONFLICT_RETRIES"
_LOG_LEVEL_ENV = "LOG_LEVEL"

_CONCURRENCY_MODES = ("merge", "optimistic")


@dataclass(frozen=True)
class Settings:
    rainfall_collection: str
    summary_collection: str
    store_root_path: Optional[str]
    trigger_workers: int
    bucket_timezone: str
    aggregation_concurrency: str
    max_conflict_retries: int
    log_level: str


def _read_str_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or default


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_int_env(name: str, default: int, minimum: int) -> int:
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
    return parsed if parsed >= minimum else default


def _read_concurrency_mode(default: str) -> str:
    candidate = _read_str_env(_CONCURRENCY_ENV, default).lower()
    return candidate if candidate in _CONCURRENCY_MODES else default


def _read_timezone(default: str) -> str:
    candidate = _read_str_env(_TIMEZONE_ENV, default)
    if candidate.upper() == "UTC":
        return candidate
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return default
    return candidate


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
        rainfall_collection=_read_str_env(_RAINFALL_COLLECTION_ENV, "rainfall"),
        summary_collection=_read_str_env(_SUMMARY_COLLECTION_ENV, "total"),
        store_root_path=_read_optional_env(_STORE_ROOT_ENV, "./tmp/mock_firestore"),
        trigger_workers=_read_int_env(_WORKER_COUNT_ENV, 4, minimum=1),
        bucket_timezone=_read_timezone("UTC"),
        aggregation_concurrency=_read_concurrency_mode("merge"),
        max_conflict_retries=_read_int_env(_CONFLICT_RETRIES_ENV, 5, minimum=0),
        log_level=_read_log_level("INFO"),
    )
