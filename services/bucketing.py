"""Map record timestamps onto (year, month) buckets."""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

from models.records import MONTH_KEYS, Bucket


def bucket_for(timestamp: datetime, tz: tzinfo = timezone.utc) -> Bucket:
    """Return the bucket for ``timestamp`` as seen in the reference zone ``tz``.

    Naive timestamps are taken to be UTC. Month labels are fixed English
    abbreviations and never depend on the process locale.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    local = timestamp.astimezone(tz)
    return Bucket(year=local.year, month=MONTH_KEYS[local.month - 1])


@lru_cache
def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)
