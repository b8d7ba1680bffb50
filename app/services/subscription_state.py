"""Subscription lifecycle state machine.

Pure functions: each takes the current Subscription and the facts of an
event, and returns a Transition describing the new subscription value and
the ledger record (if any) that must be written WITH it.  Nothing here
touches storage; repos apply a Transition atomically and conditionally on
``before`` still being the stored state.

    trialing/active/past_due --charge ok-------------> active   (+1 month, paid record)
    active/past_due          --charge failed, < grace-> past_due (failed record)
    active/past_due          --charge failed, ≥ grace-> canceled (failed record)
    active                   --cancel request--------> active   (cancel_at_period_end)
    active + cancel flag     --period end reached----> canceled (no record)

``canceled`` is terminal; resubscribing creates a new Subscription.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from app.models.plan import Plan
from app.models.subscription import (
    PaymentRecord,
    Subscription,
    SubscriptionStatus,
)
from app.services.billing_errors import InvalidTransitionError

DEFAULT_GRACE_PERIOD_DAYS = 7

_CHARGEABLE = frozenset(
    {SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE}
)
_RETRYABLE = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})


@dataclass(frozen=True, slots=True)
class Transition:
    event: str
    before: Subscription
    after: Subscription
    payment: PaymentRecord | None = None

    @property
    def changed(self) -> bool:
        return self.before != self.after


def add_one_month(moment: datetime) -> datetime:
    """Same day next month, clamped to the month's last day (Jan 31 -> Feb 28)."""
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def days_since_period_end(subscription: Subscription, now: datetime) -> int:
    # Measured from the period end, not from the last failed attempt, so
    # daily retries never reset the grace clock.
    return (now - subscription.current_period_end) // timedelta(days=1)


def charge_succeeded(
    subscription: Subscription,
    *,
    plan: Plan,
    now: datetime,
    currency: str,
    provider_reference: str | None,
    idempotency_reference: str | None,
    payment_method: str | None = None,
) -> Transition:
    if subscription.status not in _CHARGEABLE:
        raise InvalidTransitionError(subscription.status.value, "charge_succeeded")

    # Advance from the previous period end, not from now, so late passes
    # do not shift the billing anchor.
    new_start = subscription.current_period_end
    after = replace(
        subscription,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=new_start,
        current_period_end=add_one_month(new_start),
        updated_at=now,
    )
    payment = PaymentRecord.paid(
        subscription=subscription,
        amount=plan.price_monthly,
        currency=currency,
        occurred_at=now,
        provider_reference=provider_reference,
        idempotency_reference=idempotency_reference,
        payment_method=payment_method,
    )
    return Transition("charge_succeeded", subscription, after, payment)


def charge_failed(
    subscription: Subscription,
    *,
    amount: int,
    now: datetime,
    currency: str,
    failure_reason: str,
    idempotency_reference: str | None,
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
) -> Transition:
    if subscription.status not in _RETRYABLE:
        raise InvalidTransitionError(subscription.status.value, "charge_failed")

    if days_since_period_end(subscription, now) >= grace_period_days:
        after = replace(
            subscription,
            status=SubscriptionStatus.CANCELED,
            canceled_at=now,
            updated_at=now,
        )
        event = "grace_period_exhausted"
    else:
        after = replace(subscription, status=SubscriptionStatus.PAST_DUE, updated_at=now)
        event = "charge_failed"

    payment = PaymentRecord.failed(
        subscription=subscription,
        amount=amount,
        currency=currency,
        occurred_at=now,
        failure_reason=failure_reason,
        idempotency_reference=idempotency_reference,
    )
    return Transition(event, subscription, after, payment)


def request_cancel(subscription: Subscription, *, now: datetime) -> Transition:
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise InvalidTransitionError(subscription.status.value, "request_cancel")
    if subscription.cancel_at_period_end:
        return Transition("request_cancel", subscription, subscription)
    after = replace(subscription, cancel_at_period_end=True, updated_at=now)
    return Transition("request_cancel", subscription, after)


def resume(subscription: Subscription, *, now: datetime) -> Transition:
    """Withdraw a pending cancellation before the period runs out."""
    if subscription.status != SubscriptionStatus.ACTIVE:
        raise InvalidTransitionError(subscription.status.value, "resume")
    if now >= subscription.current_period_end and subscription.cancel_at_period_end:
        raise InvalidTransitionError(subscription.status.value, "resume")
    if not subscription.cancel_at_period_end:
        return Transition("resume", subscription, subscription)
    after = replace(subscription, cancel_at_period_end=False, updated_at=now)
    return Transition("resume", subscription, after)


def expire_at_period_end(subscription: Subscription, *, now: datetime) -> Transition:
    if (
        subscription.status != SubscriptionStatus.ACTIVE
        or not subscription.cancel_at_period_end
        or subscription.current_period_end > now
    ):
        raise InvalidTransitionError(subscription.status.value, "expire_at_period_end")
    after = replace(
        subscription,
        status=SubscriptionStatus.CANCELED,
        canceled_at=now,
        updated_at=now,
    )
    return Transition("expire_at_period_end", subscription, after)
