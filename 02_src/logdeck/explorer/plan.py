"""Merging a query with a filter, fingerprinting, and client-side filtering."""

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Iterable

from ..backends.base import FilterField
from ..models import LogEntry, LogFilter, LogQuery, TimeRange, format_timestamp

# Upper bound on superset retrieval when a predicate cannot be pushed down
MAX_FETCH = 1000


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class SearchPlan:
    """The effective search: a LogQuery and a LogFilter merged and normalized.

    Two (query, filter) pairs that mean the same search produce equal plans,
    no matter which side a predicate was given on.
    """

    text: str
    levels: tuple[str, ...]
    services: tuple[str, ...]
    substring: str | None
    window: TimeRange
    max_results: int

    @classmethod
    def build(cls, query: LogQuery, log_filter: LogFilter | None = None) -> "SearchPlan":
        log_filter = log_filter or LogFilter()

        text = query.text.strip()
        if text == "*":
            text = ""

        levels = {v.upper() for v in (_clean(query.level), _clean(log_filter.level)) if v}
        services = {v for v in (_clean(query.service), _clean(log_filter.service)) if v}

        return cls(
            text=text,
            levels=tuple(sorted(levels)),
            services=tuple(sorted(services)),
            substring=log_filter.substring or None,
            window=query.time_range.intersect(log_filter.time_range),
            max_results=query.max_results,
        )

    @property
    def unsatisfiable(self) -> bool:
        """True when no entry can match, e.g. two different levels."""
        return len(self.levels) > 1 or len(self.services) > 1 or self.window.is_empty

    @property
    def level(self) -> str | None:
        return self.levels[0] if self.levels else None

    @property
    def service(self) -> str | None:
        return self.services[0] if self.services else None

    def predicates(self) -> set[FilterField]:
        present = set()
        if self.levels:
            present.add(FilterField.LEVEL)
        if self.services:
            present.add(FilterField.SERVICE)
        if self.window.start or self.window.end:
            present.add(FilterField.TIME_RANGE)
        if self.substring:
            present.add(FilterField.SUBSTRING)
        return present

    def canonical(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "levels": list(self.levels),
            "services": list(self.services),
            "substring": self.substring,
            "start": format_timestamp(self.window.start) if self.window.start else None,
            "end": format_timestamp(self.window.end) if self.window.end else None,
            "max_results": self.max_results,
        }

    def backend_query(
        self, native: frozenset[FilterField], overfetch: int = 4
    ) -> tuple[LogQuery, str | None]:
        """The query to send to a backend and the substring it should evaluate.

        Predicates the backend cannot evaluate are left out and the result
        size is widened so the client-side pass still has enough to keep.
        """
        missing = self.predicates() - native
        size = self.max_results
        if missing:
            size = max(size, min(self.max_results * overfetch, MAX_FETCH))

        pushed_window = FilterField.TIME_RANGE in native
        query = LogQuery(
            text=self.text,
            start_time=self.window.start if pushed_window else None,
            end_time=self.window.end if pushed_window else None,
            level=self.level if FilterField.LEVEL in native else None,
            service=self.service if FilterField.SERVICE in native else None,
            max_results=size,
        )
        substring = self.substring if FilterField.SUBSTRING in native else None
        return query, substring

    def matches(self, entry: LogEntry) -> bool:
        if self.levels and entry.level.upper() != self.levels[0]:
            return False
        if self.services and entry.service != self.services[0]:
            return False
        if self.substring and self.substring not in entry.message:
            return False
        return self.window.contains(entry.timestamp)

    def apply(self, entries: Iterable[LogEntry]) -> list[LogEntry]:
        """Filter, order newest first and cap at max_results."""
        kept = [e for e in entries if self.matches(e)]
        kept.sort(key=lambda e: e.timestamp, reverse=True)
        return kept[: self.max_results]


def fingerprint(backend_id: str, plan: SearchPlan) -> str:
    """Deterministic cache key for a search against one backend."""
    payload = json.dumps(
        {"backend": backend_id, "plan": plan.canonical()},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
