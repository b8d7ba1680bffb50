from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4


class SubscriptionStatus(str, enum.Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


# Statuses that still grant the plan's features.  past_due is included:
# users keep access while the renewal engine is collecting payment.
ENTITLED_STATUSES = frozenset(
    {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING, SubscriptionStatus.PAST_DUE}
)

# Statuses the renewal engine tries to charge.
RENEWABLE_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE})


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Subscription:
    id: UUID
    organization_id: UUID
    plan_id: UUID
    status: SubscriptionStatus
    billing_credential: str | None  # opaque provider token, never card data
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @staticmethod
    def new(
        *,
        organization_id: UUID,
        plan_id: UUID,
        billing_credential: str | None,
        current_period_start: datetime,
        current_period_end: datetime,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        now = datetime.now(UTC)
        return Subscription(
            id=uuid4(),
            organization_id=organization_id,
            plan_id=plan_id,
            status=status,
            billing_credential=billing_credential,
            current_period_start=current_period_start,
            current_period_end=current_period_end,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED

    @property
    def grants_entitlements(self) -> bool:
        return self.status in ENTITLED_STATUSES


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    """One renewal (or checkout) attempt.  Append-only."""

    id: UUID
    subscription_id: UUID
    organization_id: UUID
    amount: int
    currency: str
    status: PaymentStatus
    occurred_at: datetime
    provider_reference: str | None = None
    idempotency_reference: str | None = None
    payment_method: str | None = None
    failure_reason: str | None = None

    @staticmethod
    def paid(
        *,
        subscription: Subscription,
        amount: int,
        currency: str,
        occurred_at: datetime,
        provider_reference: str | None,
        idempotency_reference: str | None,
        payment_method: str | None = None,
    ) -> PaymentRecord:
        return PaymentRecord(
            id=uuid4(),
            subscription_id=subscription.id,
            organization_id=subscription.organization_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.PAID,
            occurred_at=occurred_at,
            provider_reference=provider_reference,
            idempotency_reference=idempotency_reference,
            payment_method=payment_method,
        )

    @staticmethod
    def failed(
        *,
        subscription: Subscription,
        amount: int,
        currency: str,
        occurred_at: datetime,
        failure_reason: str,
        idempotency_reference: str | None = None,
        provider_reference: str | None = None,
    ) -> PaymentRecord:
        return PaymentRecord(
            id=uuid4(),
            subscription_id=subscription.id,
            organization_id=subscription.organization_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.FAILED,
            occurred_at=occurred_at,
            provider_reference=provider_reference,
            idempotency_reference=idempotency_reference,
            failure_reason=failure_reason,
        )
