"""Read-through cache for entitlement decisions.

READ-THROUGH
------------
  Flow:  check → cache → miss → resolve (memberships, subscription, plan)
                               → populate cache → return
         check → cache → hit  → return (skip the database entirely)

Entitlement checks sit on the hot path of every paid feature call, and
the answer only changes when a subscription or membership changes.  One
resolution costs three queries, so caching the decision for a short
while takes nearly all of that load off PostgreSQL.

INVALIDATION
------------
Two complementary strategies:

  1. TTL (ENTITLEMENT_CACHE_TTL_SECONDS): every cached decision expires
     on its own.  This bounds staleness for changes made by other
     services (a new membership, a checkout) that never touch this cache.

  2. Explicit invalidation: when the renewal pass cancels subscriptions
     it drops every cached decision (``delete_pattern("entitlement:*")``)
     so a lapsed org loses access on the next check, not a TTL later.

The cache is an optimisation only.  Callers treat a Redis failure as a
miss and resolve from the database.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

from app.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL (time to live)."""
        ...

    async def delete(self, key: str) -> None:
        """Explicitly invalidate a cached entry."""
        ...

    async def delete_pattern(self, pattern: str) -> None:
        """Delete all keys matching a glob pattern (e.g., 'entitlement:<user>:*')."""
        ...


class InMemoryCacheService:
    """Single-process cache for dev and tests.

    The autouse fixture in conftest.py clears the store between tests.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._expires: dict[str, float] = {}

    async def get(self, key: str) -> str | None:
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= time.monotonic():
            await self.delete(key)
            return None
        return self._store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        now = time.monotonic()
        # Entries nobody reads again would otherwise stay forever.
        for k in [k for k, exp in self._expires.items() if exp <= now]:
            self._store.pop(k, None)
            self._expires.pop(k, None)
        self._store[key] = value
        self._expires[key] = now + ttl_seconds

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
        self._expires.pop(key, None)

    async def delete_pattern(self, pattern: str) -> None:
        prefix = pattern.rstrip("*")
        for k in [k for k in self._store if k.startswith(prefix)]:
            await self.delete(k)


class RedisCacheService:
    """Redis-backed cache, shared by every API replica and the worker."""

    # Key prefix keeps cache keys apart from the renewal locks.
    _PREFIX = "cache:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        return await self._redis.get(f"{self._PREFIX}{key}")

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def delete_pattern(self, pattern: str) -> None:
        # SCAN, not KEYS: KEYS blocks the server while it walks the whole
        # keyspace.  SCAN may miss keys written mid-iteration; those carry
        # a TTL and expire on their own.
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{self._PREFIX}{pattern}", count=100
            )
            if keys:
                await self._redis.delete(*keys)
            if cursor == 0:
                break


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
