"""
Keyed repositories backing the session store and the escalation engine.

The engine never keeps module-level maps.  Each store receives a
``Repository`` at construction time: the in-memory implementation below is
used by tests and by the single-process service, and a transactional
backend can be dropped in by implementing the same protocol.

The in-memory repository hands out deep copies, so a caller holding a
record cannot mutate stored state except by calling ``put``.  Per-key locks
let a store serialize read-modify-write cycles on one record while other
records proceed concurrently.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Generic, Iterator, Optional, Protocol, TypeVar

T = TypeVar("T")


class Repository(Protocol[T]):
    """Minimal keyed store: get / put / list / delete plus per-key locking."""

    def get(self, key: str) -> Optional[T]: ...

    def put(self, key: str, item: T) -> None: ...

    def list(self) -> list[T]: ...

    def delete(self, key: str) -> bool: ...

    def lock(self, key: str): ...


class InMemoryRepository(Generic[T]):
    """Thread-safe in-memory repository preserving insertion order."""

    def __init__(self) -> None:
        self._items: dict[str, T] = {}
        self._guard = threading.RLock()
        self._key_locks: dict[str, threading.RLock] = {}

    def get(self, key: str) -> Optional[T]:
        with self._guard:
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def put(self, key: str, item: T) -> None:
        with self._guard:
            self._items[key] = copy.deepcopy(item)

    def list(self) -> list[T]:
        with self._guard:
            return [copy.deepcopy(item) for item in self._items.values()]

    def delete(self, key: str) -> bool:
        """Remove ``key`` once any in-flight update on it has committed.

        The key lock itself is kept, so a writer already waiting on it
        re-reads the record and finds it gone.
        """
        with self.lock(key):
            with self._guard:
                return self._items.pop(key, None) is not None

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Hold the per-key lock for a read-modify-write cycle."""
        with self._guard:
            key_lock = self._key_locks.setdefault(key, threading.RLock())
        with key_lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._items)

    def __contains__(self, key: str) -> bool:
        with self._guard:
            return key in self._items
