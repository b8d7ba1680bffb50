"""Org-scoped subscription endpoints.

Any member can see the org's subscription; only the owner can cancel,
resume or read the payment history.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from app.api.dependencies import require_org_role, resolve_org_principal
from app.api.plans import PlanOut, plan_out
from app.models.principal import Principal
from app.models.subscription import PaymentRecord, Subscription
from app.repos.stores import membership_repo, payment_ledger, plan_repo, subscription_repo
from app.services import subscription_service
from app.services.billing_errors import BillingError, SubscriptionNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/orgs", tags=["subscriptions"])

_resolve_org = resolve_org_principal(membership_repo)
_require_owner = require_org_role("owner", membership_repo)


def _org_id(principal: Principal) -> UUID:
    """Extract org_id from an org-scoped Principal, or 500 if missing."""
    if principal.org_id is None:
        raise HTTPException(status_code=500, detail="org context not resolved")
    return principal.org_id


# --- Pydantic schemas ---


class SubscriptionOut(BaseModel):
    id: str
    organization_id: str
    status: str
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool
    canceled_at: datetime | None


class SubscriptionOverviewOut(BaseModel):
    subscription: SubscriptionOut
    plan: PlanOut | None
    last_paid_at: datetime | None
    days_since_last_paid: int | None


class PaymentOut(BaseModel):
    id: str
    subscription_id: str
    amount: int
    currency: str
    status: str
    occurred_at: datetime
    payment_method: str | None
    failure_reason: str | None


def _subscription_out(sub: Subscription) -> SubscriptionOut:
    return SubscriptionOut(
        id=str(sub.id),
        organization_id=str(sub.organization_id),
        status=sub.status.value,
        current_period_start=sub.current_period_start,
        current_period_end=sub.current_period_end,
        cancel_at_period_end=sub.cancel_at_period_end,
        canceled_at=sub.canceled_at,
    )


def _payment_out(record: PaymentRecord) -> PaymentOut:
    return PaymentOut(
        id=str(record.id),
        subscription_id=str(record.subscription_id),
        amount=record.amount,
        currency=record.currency,
        status=record.status.value,
        occurred_at=record.occurred_at,
        payment_method=record.payment_method,
        failure_reason=record.failure_reason,
    )


def _http_error(exc: BillingError) -> HTTPException:
    if isinstance(exc, SubscriptionNotFoundError):
        return HTTPException(status_code=404, detail="subscription not found")
    # InvalidTransitionError or a concurrent change: the request conflicts
    # with the subscription's current state.
    return HTTPException(status_code=409, detail=str(exc))


# --- Endpoints ---


@router.get("/{org_id}/subscription", response_model=SubscriptionOverviewOut)
async def get_subscription(
    principal: Annotated[Principal, Depends(_resolve_org)],
) -> SubscriptionOverviewOut:
    try:
        overview = await subscription_service.get_subscription_overview(
            subscription_repo, plan_repo, payment_ledger, _org_id(principal)
        )
    except SubscriptionNotFoundError as exc:
        raise _http_error(exc) from None
    return SubscriptionOverviewOut(
        subscription=_subscription_out(overview.subscription),
        plan=plan_out(overview.plan) if overview.plan else None,
        last_paid_at=overview.last_paid_at,
        days_since_last_paid=overview.days_since_last_paid,
    )


@router.post("/{org_id}/subscription/cancel", response_model=SubscriptionOut)
async def cancel_subscription(
    principal: Annotated[Principal, Depends(_require_owner)],
) -> SubscriptionOut:
    """Schedule cancellation at the end of the paid period."""
    try:
        sub = await subscription_service.request_cancel(subscription_repo, _org_id(principal))
    except BillingError as exc:
        raise _http_error(exc) from None
    logger.info(
        "Cancellation requested by user=%s",
        principal.user_id,
        extra={"organization_id": str(sub.organization_id), "subscription_id": str(sub.id)},
    )
    return _subscription_out(sub)


@router.post("/{org_id}/subscription/resume", response_model=SubscriptionOut)
async def resume_subscription(
    principal: Annotated[Principal, Depends(_require_owner)],
) -> SubscriptionOut:
    """Withdraw a pending cancellation."""
    try:
        sub = await subscription_service.resume(subscription_repo, _org_id(principal))
    except BillingError as exc:
        raise _http_error(exc) from None
    return _subscription_out(sub)


@router.get("/{org_id}/payments", response_model=list[PaymentOut])
async def list_payments(
    principal: Annotated[Principal, Depends(_require_owner)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[PaymentOut]:
    """Payment history, newest first."""
    records = await payment_ledger.list_by_organization(
        _org_id(principal), limit=limit, offset=offset
    )
    return [_payment_out(r) for r in records]
