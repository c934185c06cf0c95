from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

_NANOS_PER_SECOND = 1_000_000_000
_NANOS_PER_MICROSECOND = 1_000


@dataclass(frozen=True, slots=True, order=True)
class UtcTimestamp:
    """
    UtcTimestamp — absolute UTC instant stored as integer nanoseconds since epoch.

    Rules:
    - value is a non-negative `int` (bool is rejected)
    - nanosecond precision is preserved end to end (store points, bus payloads, API)
    """

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError(f"UtcTimestamp requires int nanoseconds, got {type(self.value).__name__}")  # noqa: E501
        if self.value < 0:
            raise ValueError(f"UtcTimestamp requires value >= 0, got {self.value}")

    @classmethod
    def from_datetime(cls, dt: datetime) -> UtcTimestamp:
        # naive datetime is ambiguous and therefore forbidden
        if dt.tzinfo is None or dt.utcoffset() is None:
            raise ValueError("UtcTimestamp requires a timezone-aware datetime (naive datetime is forbidden)")  # noqa: E501
        dt_utc = dt.astimezone(timezone.utc)
        whole_seconds = int(dt_utc.replace(microsecond=0).timestamp())
        return cls(whole_seconds * _NANOS_PER_SECOND + dt_utc.microsecond * _NANOS_PER_MICROSECOND)

    def to_datetime(self) -> datetime:
        """
        Convert to timezone-aware UTC datetime (sub-microsecond digits are truncated).
        """
        seconds, nanos = divmod(self.value, _NANOS_PER_SECOND)
        base = datetime.fromtimestamp(seconds, tz=timezone.utc)
        return base.replace(microsecond=nanos // _NANOS_PER_MICROSECOND)

    def __str__(self) -> str:
        """
        ISO-8601 in UTC with nine fractional digits and `Z` suffix.
        Example: 2026-02-04T12:34:56.123456789Z
        """
        seconds, nanos = divmod(self.value, _NANOS_PER_SECOND)
        base = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        return f"{base}.{nanos:09d}Z"
