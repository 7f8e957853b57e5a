from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

from settings import get_settings

# Rendered after the message, in this order, when present on a record.
_CONTEXT_KEYS = (
    "record_id",
    "event_kind",
    "year",
    "month",
    "delta",
    "status",
    "writes",
    "attempt",
    "reason",
)

_SIGNED_KEYS = frozenset({"delta"})

_configured = False


class ContextualFormatter(logging.Formatter):
    """Append ``key=value`` pairs taken from ``extra=`` to each message."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        context_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._context_keys: Sequence[str] = tuple(context_keys or _CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = " ".join(
            f"{key}={self._render(key, getattr(record, key))}"
            for key in self._context_keys
            if getattr(record, key, None) is not None
        )
        return f"{message} | {context}" if context else message

    @staticmethod
    def _render(key: str, value: Any) -> str:
        if key in _SIGNED_KEYS and isinstance(value, (int, float)):
            return f"{value:+g}"
        if isinstance(value, str) and " " in value:
            return repr(value)
        return str(value)


def configure_logging(level: str | int | None = None) -> None:
    """Install the contextual stream handler on the root logger once per process."""
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "context_keys": list(_CONTEXT_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
