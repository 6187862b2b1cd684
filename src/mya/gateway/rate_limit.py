"""Per-identity fixed-window rate limiting."""

import structlog

from mya.errors import StoreUnavailableError
from mya.kv import KVStore

log = structlog.get_logger()

RATE_LIMIT_PREFIX = "ratelimit:"


def rate_limit_key(identity: str) -> str:
    return f"{RATE_LIMIT_PREFIX}{identity}"


def _parse_count(raw: str | None, identity: str) -> int:
    """Counter value; an unreadable one restarts the window at 0."""
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError:
        log.warning("rate_limit_counter_corrupt", identity=identity, value=raw[:32])
        return 0


class RateLimiter:
    """Fixed-window counter stored in the key-value store.

    The window is the key's TTL: when the key expires the count restarts at 0.
    Increments are read-then-write, so concurrent calls may undercount. The
    limiter dampens abuse, it does not enforce an exact quota.
    """

    def __init__(self, store: KVStore, *, limit: int = 60, window_seconds: int = 60) -> None:
        self._store = store
        self.limit = limit
        self.window_seconds = window_seconds

    async def allow(self, identity: str) -> bool:
        """Count one request for identity; False once the window's ceiling is reached.

        Fails open when the store is unreachable.
        """
        key = rate_limit_key(identity)
        try:
            count = _parse_count(await self._store.get(key), identity)
            if count >= self.limit:
                log.info("rate_limited", identity=identity, count=count, limit=self.limit)
                return False
            await self._store.put(key, str(count + 1), ttl_seconds=self.window_seconds)
        except StoreUnavailableError as e:
            log.warning("rate_limit_store_unavailable", identity=identity, error=e.message)
            return True
        return True
