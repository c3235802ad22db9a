"""
Availability Cache
------------------
TTL cache of method availability probes, shared by every session.

Entries are replaced atomically under a lock by the refresh routine only;
readers see either the old or the new snapshot, never a partial one.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional
import logging
import threading
import time

from .methods import ExecutionMethod


@dataclass(frozen=True)
class AvailabilityEntry:
    available: bool
    checked_at: float


class AvailabilityCache:
    """
    Caches `is_available()` per method id for `ttl_seconds`.

    Usage:
        cache = AvailabilityCache(ttl_seconds=5.0)
        if cache.is_available(method):
            ...
        cache.refresh(method)   # force re-probe
    """

    def __init__(
        self,
        ttl_seconds: float = 5.0,
        clock: Optional[Callable[[], float]] = None
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[str, AvailabilityEntry] = {}
        self._lock = threading.Lock()
        self._logger = logging.getLogger("droidpilot.availability")

    def is_available(self, method: ExecutionMethod) -> bool:
        """Cached availability, probing when missing or stale."""
        entry = self._entries.get(method.id)
        if entry is not None and self._clock() - entry.checked_at < self.ttl_seconds:
            return entry.available
        return self.refresh(method)

    def refresh(self, method: ExecutionMethod) -> bool:
        """Probe a method now and store the result."""
        available = method.is_available()
        entry = AvailabilityEntry(available=available, checked_at=self._clock())

        with self._lock:
            previous = self._entries.get(method.id)
            entries = dict(self._entries)
            entries[method.id] = entry
            self._entries = entries

        if previous is None or previous.available != available:
            self._logger.info(
                f"Method {method.id} is {'available' if available else 'unavailable'}"
            )
        return available

    def refresh_all(self, methods: Iterable[ExecutionMethod]) -> Dict[str, bool]:
        """Probe every method, returning id -> availability."""
        return {method.id: self.refresh(method) for method in methods}

    def invalidate(self, method_id: Optional[str] = None) -> None:
        """Drop one entry, or all entries when no id is given."""
        with self._lock:
            if method_id is None:
                self._entries = {}
            else:
                entries = dict(self._entries)
                entries.pop(method_id, None)
                self._entries = entries

    def snapshot(self) -> Dict[str, bool]:
        """Last known availability per method id."""
        return {method_id: entry.available for method_id, entry in self._entries.items()}
