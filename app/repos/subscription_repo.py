from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from app.models.subscription import (
    ENTITLED_STATUSES,
    RENEWABLE_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from app.repos.payment_ledger_repo import InMemoryPaymentLedger
from app.services.subscription_state import Transition


class SubscriptionRepo(Protocol):
    async def get(self, subscription_id: UUID) -> Subscription | None: ...
    async def get_live_for_org(self, org_id: UUID) -> Subscription | None: ...
    async def list_due_for_renewal(self, due_by: datetime) -> list[Subscription]: ...
    async def list_expiring_cancellations(self, now: datetime) -> list[Subscription]: ...
    async def list_by_status(
        self, statuses: Iterable[SubscriptionStatus]
    ) -> list[Subscription]: ...
    async def add(self, subscription: Subscription) -> None: ...
    async def apply(self, transition: Transition) -> bool: ...


def _matches_before(stored: Subscription, before: Subscription) -> bool:
    # The fields a concurrent writer could have changed.  A mismatch means
    # someone else already applied a transition to this subscription.
    return (
        stored.status == before.status
        and stored.current_period_end == before.current_period_end
        and stored.cancel_at_period_end == before.cancel_at_period_end
    )


class InMemorySubscriptionRepo:
    """Dict-backed store that shares a ledger so apply() can write both.

    apply() never awaits between its check and its writes, so within one
    event loop it is atomic without a lock.
    """

    def __init__(self, ledger: InMemoryPaymentLedger) -> None:
        self._by_id: dict[UUID, Subscription] = {}
        self._ledger = ledger

    async def get(self, subscription_id: UUID) -> Subscription | None:
        return self._by_id.get(subscription_id)

    async def get_live_for_org(self, org_id: UUID) -> Subscription | None:
        live = [
            s
            for s in self._by_id.values()
            if s.organization_id == org_id and s.status in ENTITLED_STATUSES
        ]
        if not live:
            return None
        return max(live, key=lambda s: s.current_period_end)

    async def list_due_for_renewal(self, due_by: datetime) -> list[Subscription]:
        due = [
            s
            for s in self._by_id.values()
            if s.status in RENEWABLE_STATUSES
            and not s.cancel_at_period_end
            and s.current_period_end <= due_by
        ]
        return sorted(due, key=lambda s: s.current_period_end)

    async def list_expiring_cancellations(self, now: datetime) -> list[Subscription]:
        return [
            s
            for s in self._by_id.values()
            if s.status == SubscriptionStatus.ACTIVE
            and s.cancel_at_period_end
            and s.current_period_end <= now
        ]

    async def list_by_status(
        self, statuses: Iterable[SubscriptionStatus]
    ) -> list[Subscription]:
        wanted = set(statuses)
        return [s for s in self._by_id.values() if s.status in wanted]

    async def add(self, subscription: Subscription) -> None:
        if subscription.id in self._by_id:
            raise ValueError("subscription already exists")
        if subscription.status in ENTITLED_STATUSES and any(
            s.organization_id == subscription.organization_id
            and s.status in ENTITLED_STATUSES
            for s in self._by_id.values()
        ):
            raise ValueError("organization already has a live subscription")
        self._by_id[subscription.id] = subscription

    async def apply(self, transition: Transition) -> bool:
        before = transition.before
        stored = self._by_id.get(before.id)
        if stored is None or not _matches_before(stored, before):
            return False
        if transition.payment is not None:
            # A duplicate idempotency reference is rejected before the
            # subscription is touched, so neither write happens.
            try:
                self._ledger.append_nowait(transition.payment)
            except ValueError:
                return False
        self._by_id[before.id] = transition.after
        return True
