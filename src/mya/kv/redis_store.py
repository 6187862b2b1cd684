"""Redis-backed key-value store."""

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from mya.errors import StoreUnavailableError

log = structlog.get_logger()


class RedisKVStore:
    """Store backed by redis.asyncio.

    Driver errors surface as StoreUnavailableError so callers handle a single
    failure type.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKVStore":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except RedisError as e:
            log.warning("kv_get_failed", key=key, error=str(e))
            raise StoreUnavailableError("Key-value store unavailable", details=str(e)) from e

    async def put(self, key: str, value: str, *, ttl_seconds: int | None = None) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            log.warning("kv_put_failed", key=key, error=str(e))
            raise StoreUnavailableError("Key-value store unavailable", details=str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            log.warning("kv_delete_failed", key=key, error=str(e))
            raise StoreUnavailableError("Key-value store unavailable", details=str(e)) from e

    async def close(self) -> None:
        await self._client.aclose()
