"""Redis connection management.

This module mirrors the pattern in engine.py for PostgreSQL:
when REDIS_URL is configured, we create a real connection pool;
when it's None (local dev, tests), everything falls back to
in-memory implementations and no Redis server is needed.

WHAT LIVES IN REDIS
-------------------
PostgreSQL holds everything durable: plans, subscriptions, the payment
ledger.  Redis holds two kinds of short-lived, shared state:

  - Renewal locks (``renewal-lock:<subscription id>``): SET NX EX so two
    overlapping renewal passes on different replicas never charge the
    same subscription at the same time.  The TTL frees a lock whose
    holder crashed.
  - Entitlement cache (``cache:entitlement:<user>:<feature>``): decisions
    with a short TTL, read on every paid feature call.

Losing Redis never loses billing state: cache misses resolve from the
database, and a renewal that cannot take its lock is counted as failed
and retried by the next pass.

CONNECTION POOLING
------------------
The API and the worker issue commands from many coroutines at once.  A
connection pool lets each borrow a connection, send a command and return
it without blocking the others on the Python side.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Conditional Redis client (None when REDIS_URL is not set)
# ---------------------------------------------------------------------------
# This follows the same pattern as engine.py: check the config at import
# time, create the client if configured, otherwise set to None.  Every
# consumer of redis_pool checks for None and falls back to in-memory.

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes: less casting
        max_connections=20,  # enough for typical API concurrency
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis: mirrors lifespan_db().

    Verifies the connection on startup and closes the pool on shutdown.
    """
    if redis_pool is None:
        logger.info("No REDIS_URL configured: Redis features use in-memory fallbacks")
        yield
        return

    # Verify connectivity on startup
    try:
        await redis_pool.ping()  # type: ignore[misc]  # redis stubs mistype async ping as bool
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        # Keep serving; each cache or lock call fails on its own.
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
