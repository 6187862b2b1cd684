"""In-process key-value store with lazy TTL expiry."""

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass
class _Entry:
    value: str
    expires_at: float | None


class MemoryKVStore:
    """Dictionary-backed store for development and tests.

    Expired entries are dropped when next touched, so the clock can be swapped
    for a fake one to make TTL behaviour deterministic.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, _Entry] = {}

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry.value

    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._data[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for e in self._data.values() if e.expires_at is None or now < e.expires_at)

    def __contains__(self, key: object) -> bool:
        entry = self._data.get(key) if isinstance(key, str) else None
        if entry is None:
            return False
        return entry.expires_at is None or self._clock() < entry.expires_at
