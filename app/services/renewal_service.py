"""Renewal batch engine.

RUN:  python -m app.worker           (one pass, for cron)
      POST /v1/admin/renewals/run    (manual trigger, platform admin)

ONE PASS
--------
  1. Preflight: a payment gateway must be available.  Missing provider
     credentials abort the pass before anything is read.
  2. Candidates: ``current_period_end <= now + lookahead``, no pending
     cancellation, status active or past_due.  A failing query aborts.
  3. Each candidate is handled on its own, up to RENEWAL_CONCURRENCY at a
     time.  One subscription blowing up is logged and counted as failed;
     it never stops the others.
  4. Expiry sweep: active subscriptions flagged cancel_at_period_end
     whose period has ended become canceled.  No charge, no record.
     A failing sweep query is logged and skipped; renewals stand.

NO DOUBLE CHARGES
-----------------
Every attempt carries an idempotency reference built from the
subscription, the period being paid for and the calendar day of the
attempt:

    renew-<subscription_id>-<period_end YYYYMMDD>-<attempt day YYYYMMDD>

so a second pass on the same day produces the same reference.  Before
calling the provider the engine

  - skips the subscription if the ledger already holds that reference
  - takes a per-subscription lock (a concurrent pass skips instead of
    waiting)
  - re-reads the subscription under the lock and skips it if another
    pass already moved it

and the final write is conditional on the state the decision was based
on.  The provider also receives the reference as Idempotency-Key, which
covers the gap between a successful charge and a crashed write.

Grace is counted from the period end, not from the last attempt: daily
retries keep the subscription past_due until ``days_since_end`` reaches
GRACE_PERIOD_DAYS, then the next failure cancels it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta

from app.core.config import SETTINGS, Settings
from app.core.metrics import RENEWAL_ATTEMPTS, RENEWAL_PASS_DURATION, RENEWAL_PASS_FAILURES
from app.models.plan import Plan
from app.models.subscription import (
    RENEWABLE_STATUSES,
    PaymentRecord,
    Subscription,
    SubscriptionStatus,
)
from app.repos.payment_ledger_repo import PaymentLedger
from app.repos.plan_repo import PlanRepo
from app.repos.stores import payment_ledger, plan_repo, subscription_repo
from app.repos.subscription_repo import SubscriptionRepo
from app.services import subscription_state
from app.services.billing_errors import PaymentConfigurationError, RenewalPassError
from app.services.entitlement_service import EntitlementResolver, entitlement_resolver
from app.services.payment_gateway import PaymentGateway, build_gateway
from app.services.renewal_lock import RenewalLock, renewal_lock

logger = logging.getLogger(__name__)

RENEWED = "renewed"
FAILED = "failed"
CANCELED = "canceled"
SKIPPED = "skipped"

MISSING_PLAN = "MISSING_PLAN"
MISSING_BILLING_CREDENTIAL = "MISSING_BILLING_CREDENTIAL"


@dataclass
class RenewalSummary:
    renewed: int = 0
    failed: int = 0
    canceled: int = 0
    skipped: int = 0

    def count(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)
        RENEWAL_ATTEMPTS.labels(outcome=outcome).inc()

    @property
    def total(self) -> int:
        return self.renewed + self.failed + self.canceled + self.skipped

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def renewal_reference(subscription: Subscription, now: datetime) -> str:
    return (
        f"renew-{subscription.id}-"
        f"{subscription.current_period_end:%Y%m%d}-{now:%Y%m%d}"
    )


def _order_name(plan: Plan) -> str:
    return f"{plan.name} plan renewal"


class RenewalEngine:
    def __init__(
        self,
        *,
        subscriptions: SubscriptionRepo,
        plans: PlanRepo,
        ledger: PaymentLedger,
        lock: RenewalLock,
        settings: Settings = SETTINGS,
        entitlements: EntitlementResolver | None = None,
    ) -> None:
        self._subscriptions = subscriptions
        self._plans = plans
        self._ledger = ledger
        self._lock = lock
        self._settings = settings
        self._entitlements = entitlements

    async def run_pass(
        self,
        now: datetime | None = None,
        *,
        gateway: PaymentGateway | None = None,
    ) -> RenewalSummary:
        """Run one renewal pass.

        Raises PaymentConfigurationError or RenewalPassError when the pass
        cannot run at all.  Everything else is reflected in the summary.
        """
        now = now or datetime.now(UTC)
        started = time.perf_counter()

        if gateway is None:
            try:
                gateway = build_gateway(self._settings)
            except PaymentConfigurationError:
                RENEWAL_PASS_FAILURES.labels(reason="configuration").inc()
                logger.error("Renewal pass aborted: payment provider is not configured")
                raise

        due_by = now + timedelta(hours=self._settings.renewal_lookahead_hours)
        try:
            candidates = await self._subscriptions.list_due_for_renewal(due_by)
        except Exception as exc:
            RENEWAL_PASS_FAILURES.labels(reason="candidate_query").inc()
            logger.exception("Renewal pass aborted: candidate query failed")
            raise RenewalPassError("could not load subscriptions due for renewal") from exc

        logger.info("Renewal pass started: %d candidates due by %s", len(candidates), due_by)
        summary = RenewalSummary()

        semaphore = asyncio.Semaphore(self._settings.renewal_concurrency)

        async def worker(sub: Subscription) -> str:
            async with semaphore:
                return await self._process(sub, now, gateway)

        outcomes = await asyncio.gather(*(worker(s) for s in candidates))
        for outcome in outcomes:
            summary.count(outcome)

        for outcome in await self._expire_cancellations(now):
            summary.count(outcome)

        if summary.canceled and self._entitlements is not None:
            await self._entitlements.invalidate_all()

        RENEWAL_PASS_DURATION.observe(time.perf_counter() - started)
        logger.info(
            "Renewal pass complete: renewed=%d failed=%d canceled=%d skipped=%d",
            summary.renewed,
            summary.failed,
            summary.canceled,
            summary.skipped,
        )
        return summary

    async def _process(
        self, subscription: Subscription, now: datetime, gateway: PaymentGateway
    ) -> str:
        log_extra = {
            "subscription_id": str(subscription.id),
            "organization_id": str(subscription.organization_id),
        }
        try:
            outcome = await self._renew_one(subscription, now, gateway)
        except Exception:
            logger.exception("Renewal failed unexpectedly", extra=log_extra)
            outcome = FAILED
        logger.info(
            "Renewal outcome %s", outcome, extra={**log_extra, "renewal_outcome": outcome}
        )
        return outcome

    async def _renew_one(
        self, subscription: Subscription, now: datetime, gateway: PaymentGateway
    ) -> str:
        reference = renewal_reference(subscription, now)
        if await self._ledger.find_by_idempotency_reference(reference) is not None:
            return SKIPPED

        plan = await self._plans.get_by_id(subscription.plan_id)
        if plan is None or not subscription.billing_credential:
            reason = MISSING_PLAN if plan is None else MISSING_BILLING_CREDENTIAL
            logger.warning(
                "Cannot renew: %s",
                reason,
                extra={"subscription_id": str(subscription.id)},
            )
            await self._ledger.append(
                PaymentRecord.failed(
                    subscription=subscription,
                    amount=plan.price_monthly if plan is not None else 0,
                    currency=self._settings.billing_currency,
                    occurred_at=now,
                    failure_reason=reason,
                    idempotency_reference=reference,
                )
            )
            return FAILED

        lock_key = str(subscription.id)
        token = await self._lock.acquire(lock_key, self._settings.renewal_lock_ttl_seconds)
        if token is None:
            return SKIPPED
        try:
            return await self._charge_and_apply(subscription, plan, reference, now, gateway)
        finally:
            try:
                await self._lock.release(lock_key, token)
            except Exception:
                # The lock expires on its own; the outcome above stands.
                logger.warning(
                    "Releasing renewal lock failed",
                    exc_info=True,
                    extra={"subscription_id": str(subscription.id)},
                )

    async def _charge_and_apply(
        self,
        candidate: Subscription,
        plan: Plan,
        reference: str,
        now: datetime,
        gateway: PaymentGateway,
    ) -> str:
        # Re-read under the lock: another pass may have finished this one
        # between our candidate query and acquiring the lock.
        current = await self._subscriptions.get(candidate.id)
        if (
            current is None
            or current.status not in RENEWABLE_STATUSES
            or current.cancel_at_period_end
            or current.current_period_end != candidate.current_period_end
        ):
            return SKIPPED
        if await self._ledger.find_by_idempotency_reference(reference) is not None:
            return SKIPPED

        result = await gateway.charge(
            current.billing_credential or "",
            plan.price_monthly,
            reference,
            customer_key=str(current.organization_id),
            order_name=_order_name(plan),
        )

        if result.succeeded:
            transition = subscription_state.charge_succeeded(
                current,
                plan=plan,
                now=now,
                currency=self._settings.billing_currency,
                provider_reference=result.provider_reference,
                idempotency_reference=reference,
                payment_method=result.payment_method,
            )
        else:
            transition = subscription_state.charge_failed(
                current,
                amount=plan.price_monthly,
                now=now,
                currency=self._settings.billing_currency,
                failure_reason=result.failure_reason or "PAYMENT_FAILED",
                idempotency_reference=reference,
                grace_period_days=self._settings.grace_period_days,
            )

        if not await self._subscriptions.apply(transition):
            logger.error(
                "Lost the write after charging (%s); provider reference %s",
                transition.event,
                result.provider_reference,
                extra={"subscription_id": str(current.id), "idempotency_reference": reference},
            )
            return SKIPPED

        if transition.after.status == SubscriptionStatus.CANCELED:
            return CANCELED
        return RENEWED if result.succeeded else FAILED

    async def _expire_cancellations(self, now: datetime) -> list[str]:
        try:
            expiring = await self._subscriptions.list_expiring_cancellations(now)
        except Exception:
            # Renewals already done this pass stand; the next pass retries the sweep.
            RENEWAL_PASS_FAILURES.labels(reason="expiry_query").inc()
            logger.exception("Expiry sweep skipped: query failed")
            return []

        outcomes = []
        for sub in expiring:
            log_extra = {"subscription_id": str(sub.id)}
            try:
                transition = subscription_state.expire_at_period_end(sub, now=now)
                applied = await self._subscriptions.apply(transition)
            except Exception:
                logger.exception("Expiring canceled subscription failed", extra=log_extra)
                outcomes.append(FAILED)
                continue
            outcomes.append(CANCELED if applied else SKIPPED)
            if applied:
                logger.info(
                    "Subscription ended at period end",
                    extra={**log_extra, "renewal_outcome": CANCELED},
                )
        return outcomes


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

renewal_engine = RenewalEngine(
    subscriptions=subscription_repo,
    plans=plan_repo,
    ledger=payment_ledger,
    lock=renewal_lock,
    entitlements=entitlement_resolver,
)


async def run_renewal_pass(
    now: datetime | None = None, *, gateway: PaymentGateway | None = None
) -> RenewalSummary:
    return await renewal_engine.run_pass(now, gateway=gateway)
