"""Key-value store protocol.

Every stateful component takes a store as a constructor dependency. A missing
key is a normal outcome, never an exception, and a value written earlier may
have expired by the time it is read again.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class KVStore(Protocol):
    """get/put/delete with an optional per-key TTL."""

    async def get(self, key: str) -> str | None:
        """Return the stored value, or None if absent or expired."""
        ...

    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        """Store a value, replacing any previous one and its TTL."""
        ...

    async def delete(self, key: str) -> None:
        """Remove a key. Deleting an absent key is a no-op."""
        ...
