from __future__ import annotations
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, List


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = Lock()
        self.holders = 0


class KeyedLocks:
    """One lock per identity, kept only while someone holds or waits on it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.holders += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[key]

    @contextmanager
    def holding(self, *keys: str) -> Iterator[None]:
        # callers pass keys in a fixed order (user, then book) so no two
        # requests can wait on each other
        taken: List[tuple] = []
        acquired: List[tuple] = []
        try:
            for key in keys:
                entry = self._checkout(key)
                taken.append((key, entry))
                entry.lock.acquire()
                acquired.append((key, entry))
            yield
        finally:
            for _, entry in reversed(acquired):
                entry.lock.release()
            for key, entry in reversed(taken):
                self._checkin(key, entry)
