from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

import pytest

from app.models.subscription import PaymentRecord, SubscriptionStatus
from app.repos.payment_ledger_repo import InMemoryPaymentLedger
from app.repos.stores import payment_ledger, plan_repo, subscription_repo
from app.repos.subscription_repo import InMemorySubscriptionRepo
from app.services import subscription_service as svc
from app.services.billing_errors import (
    BillingError,
    InvalidTransitionError,
    SubscriptionNotFoundError,
)
from tests.conftest import NOW, add_subscription


def _paid(sub, when) -> None:
    asyncio.run(
        payment_ledger.append(
            PaymentRecord.paid(
                subscription=sub,
                amount=59000,
                currency="KRW",
                occurred_at=when,
                provider_reference=None,
                idempotency_reference=None,
            )
        )
    )


def _cancel_at(sub, days_ago: int) -> None:
    subscription_repo._by_id[sub.id] = replace(  # type: ignore[attr-defined]
        sub, canceled_at=NOW - timedelta(days=days_ago)
    )


# ---- days since last paid ----


def test_days_since_last_paid_none_when_never_paid() -> None:
    sub = add_subscription()
    assert asyncio.run(svc.days_since_last_paid(payment_ledger, sub.id, NOW)) is None


def test_days_since_last_paid_uses_latest_paid_record() -> None:
    sub = add_subscription()
    _paid(sub, NOW - timedelta(days=40))
    _paid(sub, NOW - timedelta(days=9, hours=5))
    assert asyncio.run(svc.days_since_last_paid(payment_ledger, sub.id, NOW)) == 9


def test_failed_records_do_not_count_as_paid() -> None:
    sub = add_subscription()
    asyncio.run(
        payment_ledger.append(
            PaymentRecord.failed(
                subscription=sub,
                amount=59000,
                currency="KRW",
                occurred_at=NOW - timedelta(days=1),
                failure_reason="declined",
            )
        )
    )
    assert asyncio.run(svc.days_since_last_paid(payment_ledger, sub.id, NOW)) is None


# ---- cancel / resume ----


def test_request_cancel_flags_live_subscription() -> None:
    sub = add_subscription()
    updated = asyncio.run(svc.request_cancel(subscription_repo, sub.organization_id, now=NOW))
    assert updated.cancel_at_period_end is True
    assert asyncio.run(subscription_repo.get(sub.id)).cancel_at_period_end is True


def test_request_cancel_without_subscription() -> None:
    with pytest.raises(SubscriptionNotFoundError):
        asyncio.run(svc.request_cancel(subscription_repo, uuid4(), now=NOW))


def test_request_cancel_past_due_is_invalid() -> None:
    sub = add_subscription(status=SubscriptionStatus.PAST_DUE)
    with pytest.raises(InvalidTransitionError):
        asyncio.run(svc.request_cancel(subscription_repo, sub.organization_id, now=NOW))


def test_resume_clears_pending_cancellation() -> None:
    sub = add_subscription(cancel_at_period_end=True)
    updated = asyncio.run(svc.resume(subscription_repo, sub.organization_id, now=NOW))
    assert updated.cancel_at_period_end is False


def test_concurrent_change_is_reported() -> None:
    class _LosesEveryRace(InMemorySubscriptionRepo):
        async def apply(self, transition):
            return False

    repo = _LosesEveryRace(InMemoryPaymentLedger())
    sub = add_subscription()
    asyncio.run(repo.add(sub))

    with pytest.raises(BillingError, match="concurrently"):
        asyncio.run(svc.request_cancel(repo, sub.organization_id, now=NOW))


# ---- overview ----


def test_overview_includes_plan_and_payment_age() -> None:
    sub = add_subscription(plan_key="basic")
    _paid(sub, NOW - timedelta(days=3))

    overview = asyncio.run(
        svc.get_subscription_overview(
            subscription_repo, plan_repo, payment_ledger, sub.organization_id, now=NOW
        )
    )

    assert overview.subscription == sub
    assert overview.plan is not None and overview.plan.plan_key == "basic"
    assert overview.last_paid_at == NOW - timedelta(days=3)
    assert overview.days_since_last_paid == 3


def test_overview_missing_plan_is_none() -> None:
    sub = add_subscription(plan_id=uuid4())
    overview = asyncio.run(
        svc.get_subscription_overview(
            subscription_repo, plan_repo, payment_ledger, sub.organization_id, now=NOW
        )
    )
    assert overview.plan is None


# ---- stats ----


def test_stats_revenue_excludes_trials() -> None:
    add_subscription(plan_key="pro")
    add_subscription(plan_key="academy", status=SubscriptionStatus.TRIALING)

    stats = asyncio.run(svc.subscription_stats(subscription_repo, plan_repo, now=NOW))

    assert stats.total_subscribers == 2
    assert stats.mrr == 59000
    assert stats.arr == 59000 * 12


def test_stats_churn_counts_recent_cancellations_only() -> None:
    for _ in range(3):
        add_subscription(plan_key="basic")
    recent = add_subscription(status=SubscriptionStatus.CANCELED)
    old = add_subscription(status=SubscriptionStatus.CANCELED)
    _cancel_at(recent, days_ago=5)
    _cancel_at(old, days_ago=45)

    stats = asyncio.run(svc.subscription_stats(subscription_repo, plan_repo, now=NOW))

    assert stats.churn_rate == 0.25


def test_stats_plan_distribution_in_tier_order() -> None:
    add_subscription(plan_key="academy")
    add_subscription(plan_key="basic")
    add_subscription(plan_key="basic", status=SubscriptionStatus.PAST_DUE)

    stats = asyncio.run(svc.subscription_stats(subscription_repo, plan_repo, now=NOW))

    assert [(p.plan_key, p.count) for p in stats.plan_distribution] == [
        ("basic", 2),
        ("academy", 1),
    ]
