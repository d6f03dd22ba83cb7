from __future__ import annotations

from datetime import UTC, date, datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def ensure_utc(dt: datetime) -> datetime:
    # Naive timestamps are treated as already being UTC.
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_utc_naive(dt: datetime) -> datetime:
    return ensure_utc(dt).replace(tzinfo=None)


def utc_now_naive() -> datetime:
    return to_utc_naive(utc_now())


def truncate_to_date(dt: datetime) -> date:
    return ensure_utc(dt).date()
