"""Unified log data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string, epoch number or datetime into an aware UTC datetime.

    Epoch numbers are interpreted as seconds, milliseconds, microseconds or
    nanoseconds depending on their magnitude. Returns None when the value
    cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, (int, float)):
        number = float(value)
        magnitude = abs(number)
        if magnitude >= 1e17:
            number /= 1e9
        elif magnitude >= 1e14:
            number /= 1e6
        elif magnitude >= 1e11:
            number /= 1e3
        try:
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return parse_timestamp(int(text))
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parse_timestamp(parsed)

    return None


def format_timestamp(value: datetime) -> str:
    """Render a UTC datetime as ISO-8601 with a Z suffix."""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class LogEntry:
    """A single log record, normalized across backends."""

    timestamp: datetime
    level: str = ""
    message: str = ""
    service: str = ""
    trace_id: str = ""
    attributes: dict[str, str] = field(default_factory=dict, hash=False, compare=True)

    def __post_init__(self):
        # Frozen, so normalization goes through object.__setattr__
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp) or EPOCH)
        object.__setattr__(self, "attributes", dict(self.attributes))

    @property
    def dedupe_key(self) -> tuple[datetime, str]:
        """Identity used to avoid delivering an entry twice while streaming."""
        return (self.timestamp, self.trace_id)

    def to_dict(self) -> dict[str, Any]:
        """Serialize with an ISO-8601 timestamp."""
        return {
            "timestamp": format_timestamp(self.timestamp),
            "level": self.level,
            "message": self.message,
            "service": self.service,
            "traceId": self.trace_id,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        """Inverse of to_dict()."""
        return cls(
            timestamp=parse_timestamp(data.get("timestamp")) or EPOCH,
            level=str(data.get("level") or ""),
            message=str(data.get("message") or ""),
            service=str(data.get("service") or ""),
            trace_id=str(data.get("traceId") or data.get("trace_id") or ""),
            attributes={
                str(k): str(v) for k, v in (data.get("attributes") or {}).items()
            },
        )


@dataclass(frozen=True)
class TimeRange:
    """Inclusive time window; either bound may be open."""

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self):
        object.__setattr__(self, "start", parse_timestamp(self.start))
        object.__setattr__(self, "end", parse_timestamp(self.end))

    @property
    def is_empty(self) -> bool:
        return self.start is not None and self.end is not None and self.start > self.end

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True

    def intersect(self, other: "TimeRange | None") -> "TimeRange":
        """Narrowest window satisfying both ranges."""
        if other is None:
            return self
        starts = [t for t in (self.start, other.start) if t is not None]
        ends = [t for t in (self.end, other.end) if t is not None]
        return TimeRange(
            start=max(starts) if starts else None,
            end=min(ends) if ends else None,
        )


@dataclass(frozen=True)
class LogQuery:
    """Backend-independent search request."""

    text: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    level: str | None = None
    service: str | None = None
    max_results: int = 50

    def __post_init__(self):
        object.__setattr__(self, "start_time", parse_timestamp(self.start_time))
        object.__setattr__(self, "end_time", parse_timestamp(self.end_time))
        if self.max_results < 1:
            raise ValueError(f"max_results must be >= 1, got {self.max_results}")

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(self.start_time, self.end_time)

    @property
    def has_text(self) -> bool:
        """False for the match-everything forms '' and '*'."""
        return self.text.strip() not in ("", "*")


@dataclass(frozen=True)
class LogFilter:
    """Extra predicates narrowing a LogQuery."""

    level: str | None = None
    service: str | None = None
    substring: str | None = None
    time_range: TimeRange | None = None


@dataclass
class LogAggregation:
    """Exact summary of a set of entries."""

    total: int = 0
    by_level: dict[str, int] = field(default_factory=dict)
    by_service: dict[str, int] = field(default_factory=dict)
    min_timestamp: datetime | None = None
    max_timestamp: datetime | None = None
