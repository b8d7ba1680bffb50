"""Payment ledger: the append-only audit trail of charge attempts.

There is no update or delete: a PaymentRecord is written once, in the
same transaction as the
subscription change it explains (see SubscriptionRepo.apply), or on its
own for attempts that never reached the provider.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from app.models.subscription import PaymentRecord, PaymentStatus


class PaymentLedger(Protocol):
    async def append(self, record: PaymentRecord) -> None: ...
    async def list_by_subscription(self, subscription_id: UUID) -> list[PaymentRecord]: ...
    async def list_by_organization(
        self, org_id: UUID, *, limit: int = 20, offset: int = 0
    ) -> list[PaymentRecord]: ...
    async def find_by_idempotency_reference(
        self, reference: str
    ) -> PaymentRecord | None: ...
    async def last_paid_at(self, subscription_id: UUID) -> datetime | None: ...


class InMemoryPaymentLedger:
    def __init__(self) -> None:
        self._records: list[PaymentRecord] = []
        self._by_reference: dict[str, PaymentRecord] = {}

    async def append(self, record: PaymentRecord) -> None:
        self.append_nowait(record)

    def append_nowait(self, record: PaymentRecord) -> None:
        """Synchronous append, so the subscription repo can write a
        transition and its record without yielding to the event loop."""
        ref = record.idempotency_reference
        if ref is not None and ref in self._by_reference:
            raise ValueError("idempotency_reference already recorded")
        if any(r.id == record.id for r in self._records):
            raise ValueError("payment record already exists")
        self._records.append(record)
        if ref is not None:
            self._by_reference[ref] = record

    async def list_by_subscription(self, subscription_id: UUID) -> list[PaymentRecord]:
        rows = [r for r in self._records if r.subscription_id == subscription_id]
        return sorted(rows, key=lambda r: r.occurred_at, reverse=True)

    async def list_by_organization(
        self, org_id: UUID, *, limit: int = 20, offset: int = 0
    ) -> list[PaymentRecord]:
        rows = [r for r in self._records if r.organization_id == org_id]
        rows.sort(key=lambda r: r.occurred_at, reverse=True)
        return rows[offset : offset + limit]

    async def find_by_idempotency_reference(self, reference: str) -> PaymentRecord | None:
        return self._by_reference.get(reference)

    async def last_paid_at(self, subscription_id: UUID) -> datetime | None:
        paid = [
            r.occurred_at
            for r in self._records
            if r.subscription_id == subscription_id and r.status == PaymentStatus.PAID
        ]
        return max(paid, default=None)
