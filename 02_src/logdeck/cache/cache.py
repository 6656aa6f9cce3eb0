"""TTL-keyed in-memory cache."""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Generic, Protocol, TypeVar

T = TypeVar("T")


class ICache(Protocol[T]):
    """Memo store with per-entry expiry."""

    def get(self, key: str) -> T | None:
        """Return the live value for key, evicting it if expired."""
        ...

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        """Store value; ttl in seconds overrides the default."""
        ...

    def invalidate(self, key: str) -> None:
        """Drop one key."""
        ...

    def clear(self) -> None:
        """Drop everything."""
        ...

    def cleanup_expired(self) -> int:
        """Sweep expired entries, returning how many were removed."""
        ...


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    expires_at: float


class Cache(Generic[T]):
    """Thread-safe TTL cache shared by interactive search and streaming."""

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self._default_ttl = default_ttl
        self._clock = clock
        self._store: dict[str, _CacheEntry[T]] = {}
        self._lock = threading.Lock()

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    def get(self, key: str) -> T | None:
        """Return the live value for key, evicting it if expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._store[key]
                return None
            return entry.value

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        """Store value; ttl in seconds overrides the default."""
        if value is None:
            raise ValueError("None cannot be cached")
        ttl = self._default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._store[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        """Drop one key."""
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        """Drop everything."""
        with self._lock:
            self._store.clear()

    def cleanup_expired(self) -> int:
        """Sweep expired entries, returning how many were removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._store.items() if now >= e.expires_at]
            for key in expired:
                del self._store[key]
            return len(expired)

    def size(self) -> int:
        """Number of stored entries, including not-yet-swept expired ones."""
        with self._lock:
            return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
