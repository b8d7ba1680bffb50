"""Renewal worker process.

RUN:  python -m app.worker           one pass, then exit (cron, k8s CronJob)
      python -m app.worker --loop    a pass every RENEWAL_INTERVAL_SECONDS

Same image as the API, different command:
  api:     uvicorn app.main:app --host 0.0.0.0 --port 8000
  renewal: python -m app.worker

Exit codes (one-shot mode):
  0  the pass ran; individual subscriptions may still have failed
  1  the pass aborted (provider not configured, candidate query failed)

In loop mode a fatal pass is logged and the loop carries on; the next
tick retries from scratch and the metrics/alerts surface the failure.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.request_context import bind_request_id
from app.services.billing_errors import BillingError
from app.services.renewal_service import RenewalSummary, run_renewal_pass

logger = logging.getLogger("worker")


async def run_once() -> RenewalSummary:
    bind_request_id(prefix="renewal-")
    return await run_renewal_pass()


async def run_loop(interval_seconds: int) -> None:
    logger.info("Renewal worker started: one pass every %ds", interval_seconds)
    while True:
        try:
            await run_once()
        except BillingError:
            logger.exception("Renewal pass aborted; retrying next interval")
        await asyncio.sleep(interval_seconds)


async def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="app.worker", description="Run subscription renewals.")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="keep running, one pass every RENEWAL_INTERVAL_SECONDS",
    )
    args = parser.parse_args(argv)

    async with lifespan_db():
        async with lifespan_redis():
            if args.loop:
                await run_loop(SETTINGS.renewal_interval_seconds)
                return 0
            try:
                summary = await run_once()
            except BillingError:
                logger.exception("Renewal pass aborted")
                return 1
    logger.info("Renewal results: %s", summary.as_dict())
    return 0


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    sys.exit(asyncio.run(main()))
