"""Result cache for flag evaluations.

Entries map a fingerprint (see ``normalization.fingerprint``) to a boolean and
expire after a fixed TTL. Invalidation is best effort and sweeps every key
under a flag's prefix; a backend failure degrades to a cache miss, so
staleness stays bounded by the TTL.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from flag_service.infra.metrics import Metrics
from flag_service.infra.redis import close_redis_client, create_redis_client

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
_SCAN_BATCH_SIZE = 500


class ResultCache(Protocol):
    async def get(self, key: str) -> bool | None: ...

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...

    async def clear(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> bool: ...


@dataclass
class _CacheEntry:
    value: bool
    expires_at: float


class InMemoryResultCache:
    """Process-local cache. Expired entries are swept from ``set`` at most once
    per ``prune_interval_seconds``, so keys that are never read again still go.

    Every operation runs without yielding to the event loop, so no lock is held.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        prune_interval_seconds: float = 60.0,
    ) -> None:
        self._entries: dict[str, _CacheEntry] = {}
        self._clock = clock
        self.prune_interval_seconds = prune_interval_seconds
        self._last_prune: float | None = None

    async def get(self, key: str) -> bool | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return entry.value

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None:
        now = self._clock()
        self._maybe_prune(now)
        self._entries[key] = _CacheEntry(value=bool(value), expires_at=now + ttl_seconds)

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            self._entries.pop(key, None)
        return len(doomed)

    async def clear(self) -> None:
        self._entries.clear()
        self._last_prune = None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def _maybe_prune(self, now: float) -> None:
        if self._last_prune is not None and now - self._last_prune < self.prune_interval_seconds:
            return
        for key in [key for key, entry in self._entries.items() if entry.expires_at <= now]:
            self._entries.pop(key, None)
        self._last_prune = now


class RedisResultCache:
    def __init__(
        self, client: redis.Redis, *, key_prefix: str, metrics: Metrics | None = None
    ) -> None:
        self.redis = client
        self.key_prefix = key_prefix
        self.metrics = metrics

    def _record_failure(self, op: str) -> None:
        logger.warning("evaluation_cache_backend_failed", extra={"extra": {"op": op}})
        if self.metrics is not None:
            self.metrics.record_cache_backend_error(op)

    async def get(self, key: str) -> bool | None:
        try:
            raw = await self.redis.get(key)
        except RedisError:
            self._record_failure("get")
            return None
        if raw is None:
            return None
        return str(raw) == "1"

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None:
        try:
            await self.redis.set(key, "1" if value else "0", ex=max(int(ttl_seconds), 1))
        except RedisError:
            self._record_failure("set")

    async def delete_prefix(self, prefix: str) -> int:
        removed = 0
        try:
            batch: list[str] = []
            async for key in self.redis.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH_SIZE):
                batch.append(key)
                if len(batch) >= _SCAN_BATCH_SIZE:
                    removed += await self.redis.delete(*batch)
                    batch = []
            if batch:
                removed += await self.redis.delete(*batch)
        except RedisError:
            self._record_failure("delete_prefix")
        return removed

    async def clear(self) -> None:
        # Only our own namespace; the Redis database may be shared.
        await self.delete_prefix(f"{self.key_prefix}:")

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            self._record_failure("ping")
            return False

    async def close(self) -> None:
        await close_redis_client(self.redis)


class DisabledResultCache:
    """Stands in when caching is switched off: every read misses, writes are dropped."""

    async def get(self, key: str) -> bool | None:  # noqa: ARG002
        return None

    async def set(self, key: str, value: bool, ttl_seconds: int) -> None:  # noqa: ARG002
        return None

    async def delete_prefix(self, prefix: str) -> int:  # noqa: ARG002
        return 0

    async def clear(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def ping(self) -> bool:
        return True


def create_result_cache(app_settings, *, metrics: Metrics | None = None) -> ResultCache:
    if not getattr(app_settings, "evaluation_cache_enabled", True):
        return DisabledResultCache()
    redis_url = getattr(app_settings, "redis_url", None)
    if redis_url:
        client = create_redis_client(
            redis_url, socket_timeout=getattr(app_settings, "redis_socket_timeout_seconds", None)
        )
        return RedisResultCache(
            client,
            key_prefix=getattr(app_settings, "evaluation_cache_key_prefix", "feature_flag_evaluation"),
            metrics=metrics,
        )
    return InMemoryResultCache()
