from __future__ import annotations

import logging

from logging_config import ContextualFormatter


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="services.aggregation",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_context_in_fixed_order() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    rendered = formatter.format(_record("Applied delta", month="Jan", year=2023, delta=-2.5))

    assert rendered == "Applied delta | year=2023 month=Jan delta=-2.5"


def test_formatter_signs_positive_deltas_and_quotes_reasons() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    rendered = formatter.format(_record("Skipping", delta=3.0, reason="amount unchanged"))

    assert rendered == "Skipping | delta=+3 reason='amount unchanged'"


def test_formatter_without_context_leaves_message_alone() -> None:
    formatter = ContextualFormatter(fmt="%(levelname)s %(message)s")

    assert formatter.format(_record("plain", record_id=None)) == "INFO plain"
