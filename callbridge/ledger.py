"""
Process-lifetime ledger of call keys that already produced a CRM activity.

Nothing is persisted: the ledger starts empty on every boot and only grows
until an administrative ``clear()``.
"""

from __future__ import annotations

import threading
from typing import Protocol


class DedupLedger(Protocol):
    def contains(self, key: str) -> bool:
        ...

    def insert(self, key: str) -> bool:
        """Add ``key``; False if it was already present."""
        ...

    def clear(self) -> None:
        ...

    def __len__(self) -> int:
        ...


class InMemoryLedger:
    """Lock-guarded set, safe to share between threads."""

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def insert(self, key: str) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
