"""Key-value store capability shared by the gateway components."""

from mya.kv.base import KVStore
from mya.kv.memory import MemoryKVStore
from mya.kv.redis_store import RedisKVStore


def create_store(kv_url: str) -> KVStore:
    """Build a store from a URL (``memory://`` or ``redis://host:port/db``)."""
    if kv_url.startswith("memory://"):
        return MemoryKVStore()
    if kv_url.startswith(("redis://", "rediss://", "unix://")):
        return RedisKVStore.from_url(kv_url)
    raise ValueError(f"Unsupported kv_url scheme: {kv_url}")


__all__ = ["KVStore", "MemoryKVStore", "RedisKVStore", "create_store"]
