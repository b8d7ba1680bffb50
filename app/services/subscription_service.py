"""Owner and admin operations on an organization's subscription.

Cancel and resume go through the state machine and the repo's
conditional apply() like every other lifecycle change; nothing here
writes subscription fields directly.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID

from app.models.plan import Plan
from app.models.subscription import ENTITLED_STATUSES, Subscription, SubscriptionStatus
from app.repos.payment_ledger_repo import PaymentLedger
from app.repos.plan_repo import PlanRepo
from app.repos.subscription_repo import SubscriptionRepo
from app.services import subscription_state
from app.services.billing_errors import BillingError, SubscriptionNotFoundError

logger = logging.getLogger(__name__)

CHURN_WINDOW_DAYS = 30


@dataclass(frozen=True, slots=True)
class SubscriptionOverview:
    subscription: Subscription
    plan: Plan | None
    last_paid_at: datetime | None
    days_since_last_paid: int | None


@dataclass(frozen=True, slots=True)
class PlanCount:
    plan_key: str
    plan_name: str
    count: int


@dataclass(frozen=True, slots=True)
class SubscriptionStats:
    total_subscribers: int
    mrr: int
    arr: int
    churn_rate: float
    plan_distribution: list[PlanCount] = field(default_factory=list)


def days_since(moment: datetime | None, now: datetime) -> int | None:
    if moment is None:
        return None
    return (now - moment) // timedelta(days=1)


async def days_since_last_paid(
    ledger: PaymentLedger, subscription_id: UUID, now: datetime | None = None
) -> int | None:
    """Whole days since the last ``paid`` record, None if never paid."""
    now = now or datetime.now(UTC)
    return days_since(await ledger.last_paid_at(subscription_id), now)


async def _live_subscription(repo: SubscriptionRepo, org_id: UUID) -> Subscription:
    sub = await repo.get_live_for_org(org_id)
    if sub is None:
        raise SubscriptionNotFoundError(f"organization {org_id} has no live subscription")
    return sub


async def _apply(repo: SubscriptionRepo, transition: subscription_state.Transition) -> Subscription:
    if not transition.changed:
        return transition.after
    if not await repo.apply(transition):
        # The renewal pass moved the subscription between our read and
        # our write.  The caller can retry against the new state.
        raise BillingError("subscription changed concurrently; retry the request")
    logger.info(
        "Subscription %s applied",
        transition.event,
        extra={
            "subscription_id": str(transition.after.id),
            "organization_id": str(transition.after.organization_id),
        },
    )
    return transition.after


async def request_cancel(
    repo: SubscriptionRepo, org_id: UUID, *, now: datetime | None = None
) -> Subscription:
    """Flag the org's subscription to end at the current period end."""
    sub = await _live_subscription(repo, org_id)
    transition = subscription_state.request_cancel(sub, now=now or datetime.now(UTC))
    return await _apply(repo, transition)


async def resume(
    repo: SubscriptionRepo, org_id: UUID, *, now: datetime | None = None
) -> Subscription:
    sub = await _live_subscription(repo, org_id)
    transition = subscription_state.resume(sub, now=now or datetime.now(UTC))
    return await _apply(repo, transition)


async def get_subscription_overview(
    subscriptions: SubscriptionRepo,
    plans: PlanRepo,
    ledger: PaymentLedger,
    org_id: UUID,
    *,
    now: datetime | None = None,
) -> SubscriptionOverview:
    sub = await _live_subscription(subscriptions, org_id)
    last_paid = await ledger.last_paid_at(sub.id)
    return SubscriptionOverview(
        subscription=sub,
        plan=await plans.get_by_id(sub.plan_id),
        last_paid_at=last_paid,
        days_since_last_paid=days_since(last_paid, now or datetime.now(UTC)),
    )


async def subscription_stats(
    subscriptions: SubscriptionRepo,
    plans: PlanRepo,
    *,
    now: datetime | None = None,
) -> SubscriptionStats:
    """Subscriber count, MRR/ARR, 30-day churn and plan distribution.

    MRR counts subscriptions that are being billed (active, past_due);
    trials are subscribers but contribute nothing until they convert.
    Churn is cancellations in the last 30 days over the subscribers at
    the start of that window (current subscribers + those who left).
    """
    now = now or datetime.now(UTC)
    live = await subscriptions.list_by_status(ENTITLED_STATUSES)
    canceled = await subscriptions.list_by_status([SubscriptionStatus.CANCELED])

    window_start = now - timedelta(days=CHURN_WINDOW_DAYS)
    churned = sum(
        1 for s in canceled if s.canceled_at is not None and s.canceled_at >= window_start
    )

    plan_by_id = {p.id: p for p in await plans.list_active()}
    for plan_id in {s.plan_id for s in live} - plan_by_id.keys():
        plan = await plans.get_by_id(plan_id)
        if plan is not None:
            plan_by_id[plan.id] = plan

    mrr = sum(
        plan_by_id[s.plan_id].price_monthly
        for s in live
        if s.status != SubscriptionStatus.TRIALING and s.plan_id in plan_by_id
    )

    counts = Counter(s.plan_id for s in live)
    distribution = [
        PlanCount(plan_key=plan.plan_key, plan_name=plan.name, count=counts[plan.id])
        for plan in sorted(plan_by_id.values(), key=lambda p: p.sort_order)
        if counts[plan.id]
    ]

    base = len(live) + churned
    return SubscriptionStats(
        total_subscribers=len(live),
        mrr=mrr,
        arr=mrr * 12,
        churn_rate=round(churned / base, 4) if base else 0.0,
        plan_distribution=distribution,
    )
