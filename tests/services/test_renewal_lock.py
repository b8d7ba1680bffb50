from __future__ import annotations

import asyncio

from app.services.renewal_lock import InMemoryRenewalLock, RedisRenewalLock, RenewalLock


def test_second_acquire_is_refused_until_release() -> None:
    lock = InMemoryRenewalLock()
    token = asyncio.run(lock.acquire("sub-1", 60))
    assert token is not None
    assert asyncio.run(lock.acquire("sub-1", 60)) is None

    asyncio.run(lock.release("sub-1", token))
    assert asyncio.run(lock.acquire("sub-1", 60)) is not None


def test_locks_are_per_key() -> None:
    lock = InMemoryRenewalLock()
    assert asyncio.run(lock.acquire("sub-1", 60)) is not None
    assert asyncio.run(lock.acquire("sub-2", 60)) is not None


def test_expired_lock_can_be_taken_over() -> None:
    lock = InMemoryRenewalLock()
    stale = asyncio.run(lock.acquire("sub-1", 0))
    fresh = asyncio.run(lock.acquire("sub-1", 60))
    assert fresh is not None and fresh != stale

    # The original holder must not release the new owner's lock.
    asyncio.run(lock.release("sub-1", stale))
    assert asyncio.run(lock.acquire("sub-1", 60)) is None


class _FakeRedis:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.set_result = True

    async def set(self, key, value, nx=False, ex=None):
        self.calls.append(("set", key, value, nx, ex))
        return self.set_result

    async def eval(self, script, numkeys, key, token):
        self.calls.append(("eval", key, token))
        return 1


def test_redis_lock_uses_set_nx_ex() -> None:
    redis = _FakeRedis()
    lock = RedisRenewalLock(redis)

    token = asyncio.run(lock.acquire("sub-1", 300))

    assert token is not None
    assert redis.calls == [("set", "renewal-lock:sub-1", token, True, 300)]
    assert isinstance(lock, RenewalLock)


def test_redis_lock_held_elsewhere() -> None:
    redis = _FakeRedis()
    redis.set_result = None
    assert asyncio.run(RedisRenewalLock(redis).acquire("sub-1", 300)) is None


def test_redis_release_is_compare_and_delete() -> None:
    redis = _FakeRedis()
    asyncio.run(RedisRenewalLock(redis).release("sub-1", "tok"))
    assert redis.calls == [("eval", "renewal-lock:sub-1", "tok")]
