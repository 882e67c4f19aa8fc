"""Normalization of the timestamp shapes a case document can carry.

A date-like field may hold a ``RawTimestamp`` (what the document store
returns for stored timestamps), a ``datetime``/``date``, an ISO-8601 string,
or nothing at all. ``to_datetime`` folds every one of them into an aware UTC
``datetime`` or ``None``.
"""

import datetime
import math
from dataclasses import dataclass
from typing import Optional, Union

TIMESTAMP_TAG = "timestamp"
ONE_DAY = datetime.timedelta(days=1)


@dataclass(frozen=True, order=True)
class RawTimestamp:
    seconds: int
    nanoseconds: int = 0

    @classmethod
    def from_datetime(cls, value: datetime.datetime) -> "RawTimestamp":
        value = _as_aware(value)
        epoch_seconds = value.timestamp()
        seconds = math.floor(epoch_seconds)
        return cls(seconds=seconds, nanoseconds=value.microsecond * 1000)

    @classmethod
    def now(cls) -> "RawTimestamp":
        return cls.from_datetime(utcnow())

    def to_datetime(self) -> datetime.datetime:
        base = datetime.datetime.fromtimestamp(self.seconds, tz=datetime.timezone.utc)
        return base + datetime.timedelta(microseconds=self.nanoseconds // 1000)

    def to_json(self):
        return {
            "__type__": TIMESTAMP_TAG,
            "seconds": self.seconds,
            "nanoseconds": self.nanoseconds,
        }


TimestampLike = Union[RawTimestamp, datetime.datetime, datetime.date, str, None]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _as_aware(value: datetime.datetime) -> datetime.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


def _parse_iso(value: str) -> Optional[datetime.datetime]:
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return _as_aware(datetime.datetime.fromisoformat(text))
    except ValueError:
        return None


def to_datetime(value: TimestampLike) -> Optional[datetime.datetime]:
    """Return ``value`` as an aware UTC datetime, or ``None`` when absent or unparseable."""
    if value is None:
        return None
    try:
        if isinstance(value, RawTimestamp):
            return value.to_datetime()
        if isinstance(value, datetime.datetime):
            return _as_aware(value)
        if isinstance(value, datetime.date):
            return datetime.datetime(
                value.year, value.month, value.day, tzinfo=datetime.timezone.utc
            )
        if isinstance(value, str):
            return _parse_iso(value)
        if isinstance(value, dict):
            decoded = decode_timestamp(value)
            if isinstance(decoded, RawTimestamp):
                return decoded.to_datetime()
    except (OverflowError, OSError, ValueError):
        return None
    return None


def decode_timestamp(value):
    """Turn a stored timestamp mapping back into a ``RawTimestamp``.

    Accepts the tagged form the document store writes as well as the bare
    ``{"seconds": ..., "nanoseconds": ...}`` / ``{"_seconds": ...}`` shapes
    that exported documents use. Anything else is returned unchanged.
    """
    if not isinstance(value, dict):
        return value
    tag = value.get("__type__")
    if tag is not None and tag != TIMESTAMP_TAG:
        return value
    seconds = value.get("seconds", value.get("_seconds"))
    if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
        return value
    if tag is None and not set(value) <= {"seconds", "nanoseconds", "_seconds", "_nanoseconds"}:
        return value
    nanoseconds = value.get("nanoseconds", value.get("_nanoseconds", 0))
    if isinstance(nanoseconds, bool) or not isinstance(nanoseconds, (int, float)):
        nanoseconds = 0
    return RawTimestamp(seconds=int(seconds), nanoseconds=int(nanoseconds))


def days_between(start: datetime.datetime, end: datetime.datetime) -> int:
    """Whole days from ``start`` to ``end``, rounded up."""
    return math.ceil((end - start) / ONE_DAY)

