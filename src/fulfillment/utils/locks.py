"""Per-key lock registry used to serialize mutations of one cart, order or courier."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock, RLock
from typing import Iterator

from ..errors import Unavailable


@dataclass(slots=True)
class _Entry:
    lock: RLock = field(default_factory=RLock)
    holders: int = 0


class KeyedLocks:
    """Hands out one re-entrant lock per key and drops it once nobody holds or waits on it."""

    def __init__(self, name: str, timeout: float = 5.0) -> None:
        self.name = name
        self.timeout = timeout
        self._guard = Lock()
        self._entries: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, _Entry())
            entry.holders += 1
        acquired = entry.lock.acquire(timeout=self.timeout)
        try:
            if not acquired:
                raise Unavailable(f"Timed out waiting for {self.name} lock.", key=key)
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
