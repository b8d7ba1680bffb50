"""Health and readiness endpoints.

LIVENESS vs READINESS
---------------------
  /health (liveness):
    "Is this process alive?"  Always 200; the body reports per-dependency
    status and the renewal counters this process has seen, so a degraded
    Redis shows up without the orchestrator restarting the container.

  /ready (readiness):
    "Can this instance serve billing traffic right now?"
    PostgreSQL is critical: entitlement checks and renewals cannot run
    without it, so an unreachable database returns 503 and the instance
    leaves the load balancer rotation until it recovers.  Redis is not
    critical (the cache and the renewal lock have in-memory fallbacks).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from prometheus_client import REGISTRY
from sqlalchemy import text

from app.db.engine import engine
from app.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _sum_counter(metric_name: str, label_filter: dict | None = None) -> float:
    """Sum all sample values for a counter across all label combinations.

    Example: _sum_counter("renewal_attempts_total", {"outcome": "failed"})
    """
    total = 0.0
    for metric in REGISTRY.collect():
        for sample in metric.samples:
            if sample.name != metric_name:
                continue
            if label_filter and not all(
                sample.labels.get(k) == v for k, v in label_filter.items()
            ):
                continue
            total += sample.value
    return total


async def _database_ok() -> bool:
    if engine is None:
        return True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return False
    return True


@router.get("/health")
async def health() -> dict:
    """Liveness probe + dependency status + renewal counters.

    Returns 200 even when degraded; the status field carries the result.
    """
    checks: dict[str, str] = {}
    overall = "ok"

    # --- Redis check ---
    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    # --- Database check ---
    if engine is None:
        checks["database"] = "not_configured"
    elif await _database_ok():
        checks["database"] = "ok"
    else:
        checks["database"] = "degraded"
        overall = "degraded"

    # Per-process counters; Prometheus aggregates across replicas.
    renewals = {
        outcome: int(_sum_counter("renewal_attempts_total", {"outcome": outcome}))
        for outcome in ("renewed", "failed", "canceled", "skipped")
    }
    renewals["aborted_passes"] = int(_sum_counter("renewal_pass_failures_total"))

    return {
        "status": overall,
        "checks": checks,
        "renewals": renewals,
    }


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: 503 when the database is configured but unreachable."""
    if not await _database_ok():
        return Response(status_code=503)
    return Response(status_code=200)
