"""Per-subscription mutual exclusion for the renewal pass.

Two overlapping passes (a cron run and a manual admin trigger, or two
worker replicas) must never charge the same subscription concurrently.
The conditional UPDATE in the repo already refuses the second write, but
by then the provider has been called twice.  The lock keeps the second
caller from reaching the provider at all.

Redis:     SET renewal-lock:<id> <token> NX EX <ttl>
           release deletes the key only if it still holds our token
In-memory: dict of id -> (token, expires_at), single process only
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable
from uuid import uuid4

from app.db.redis import redis_pool

# Compare-and-delete so an expired lock re-acquired by someone else is
# never released by the original holder.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


@runtime_checkable
class RenewalLock(Protocol):
    async def acquire(self, key: str, ttl_seconds: int) -> str | None:
        """Take the lock; returns an owner token, or None if it is held."""
        ...

    async def release(self, key: str, token: str) -> None: ...


class InMemoryRenewalLock:
    def __init__(self) -> None:
        self._held: dict[str, tuple[str, float]] = {}

    async def acquire(self, key: str, ttl_seconds: int) -> str | None:
        now = time.monotonic()
        current = self._held.get(key)
        if current is not None and current[1] > now:
            return None
        token = uuid4().hex
        self._held[key] = (token, now + ttl_seconds)
        return token

    async def release(self, key: str, token: str) -> None:
        current = self._held.get(key)
        if current is not None and current[0] == token:
            del self._held[key]


class RedisRenewalLock:
    _PREFIX = "renewal-lock:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def acquire(self, key: str, ttl_seconds: int) -> str | None:
        token = uuid4().hex
        acquired = await self._redis.set(
            f"{self._PREFIX}{key}", token, nx=True, ex=ttl_seconds
        )
        return token if acquired else None

    async def release(self, key: str, token: str) -> None:
        await self._redis.eval(_RELEASE_SCRIPT, 1, f"{self._PREFIX}{key}", token)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    renewal_lock: RenewalLock = RedisRenewalLock(redis_pool)
else:
    renewal_lock = InMemoryRenewalLock()
