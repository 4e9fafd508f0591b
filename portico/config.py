"""Per-endpoint configuration cache.

Each started endpoint owns one table in a :class:`ConfigStore`. Tables hold
the endpoint configuration as flat ``key -> value`` entries plus a second
namespace of *derived* entries (computed base URLs, static asset lookups) that
are memoized on first access and dropped whenever the configuration changes.

Readers never take a lock: lookups are single ``dict`` reads and writers
replace values whole, so a reader sees either the old or the new value of a
key. Writers serialize on the table lock.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterable, Mapping

_LOGGER = logging.getLogger("portico.config")

_MISSING = object()


@dataclass(slots=True)
class _Table:
    entries: dict[str, Any]
    derived: dict[Hashable, Any] = field(default_factory=dict)
    version: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)
    compute_locks: dict[Hashable, threading.Lock] = field(default_factory=dict)

    def compute_lock(self, key: Hashable) -> threading.Lock:
        with self.lock:
            lock = self.compute_locks.get(key)
            if lock is None:
                lock = self.compute_locks[key] = threading.Lock()
            return lock


class ConfigStore:
    """Hold configuration tables keyed by endpoint identity."""

    def __init__(self) -> None:
        self._tables: dict[str, _Table] = {}
        self._lock = threading.Lock()

    def create(self, identity: str, entries: Mapping[str, Any]) -> None:
        """Create (or replace) the table for *identity* with *entries*."""

        with self._lock:
            self._tables[identity] = _Table(entries=dict(entries))
        _LOGGER.debug("config table created for %s", identity)

    def drop(self, identity: str) -> None:
        """Remove the table for *identity* if present."""

        with self._lock:
            self._tables.pop(identity, None)

    def exists(self, identity: str) -> bool:
        return identity in self._tables

    def get(self, identity: str, key: str, default: Any = None) -> Any:
        """Return the value of *key* for *identity*, or *default*."""

        table = self._tables.get(identity)
        if table is None:
            return default
        return table.entries.get(key, default)

    def snapshot(self, identity: str) -> dict[str, Any]:
        """Return a copy of the configuration entries for *identity*."""

        table = self._tables.get(identity)
        if table is None:
            return {}
        return dict(table.entries)

    def update(
        self,
        identity: str,
        changed: Mapping[str, Any],
        removed: Iterable[str] = (),
    ) -> None:
        """Apply *changed* and *removed* keys and invalidate derived values."""

        table = self._tables.get(identity)
        if table is None:
            return
        removed = list(removed)
        with table.lock:
            for key, value in changed.items():
                table.entries[key] = value
            for key in removed:
                table.entries.pop(key, None)
            table.version += 1
            table.derived.clear()
        _LOGGER.debug(
            "config for %s updated: changed=%s removed=%s",
            identity,
            sorted(changed),
            sorted(removed),
        )

    def cache(
        self, identity: str, key: Hashable, compute: Callable[[], Any]
    ) -> Any:
        """Return the derived value *key*, computing it once with *compute*.

        Concurrent first callers for the same key wait for a single
        computation. A value computed while an :meth:`update` ran is returned
        to its caller but not stored. Without a table nothing is memoized.
        """

        table = self._tables.get(identity)
        if table is None:
            return compute()
        value = table.derived.get(key, _MISSING)
        if value is not _MISSING:
            return value
        with table.compute_lock(key):
            value = table.derived.get(key, _MISSING)
            if value is not _MISSING:
                return value
            version = table.version
            value = compute()
            with table.lock:
                if table.version == version:
                    table.derived[key] = value
            return value


__all__ = ["ConfigStore"]
