"""Prometheus metrics endpoint.

Scraped by Prometheus every N seconds.  Plain text exposition format:

  # HELP renewal_attempts_total Per-subscription renewal outcomes
  # TYPE renewal_attempts_total counter
  renewal_attempts_total{outcome="renewed"} 118.0
  renewal_attempts_total{outcome="failed"} 3.0

Restrict access in production (internal port or scraper IP allow-list):
renewal and entitlement counters reveal subscriber volume.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
