"""PostgreSQL implementation of PaymentLedger."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.tables import PaymentRecordRow
from app.models.subscription import PaymentRecord, PaymentStatus


class PgPaymentLedger:
    """Satisfies the PaymentLedger Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, record: PaymentRecord) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(payment_to_row(record))

    async def list_by_subscription(self, subscription_id: UUID) -> list[PaymentRecord]:
        stmt = (
            select(PaymentRecordRow)
            .where(PaymentRecordRow.subscription_id == subscription_id)
            .order_by(PaymentRecordRow.occurred_at.desc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_payment(r) for r in rows]

    async def list_by_organization(
        self, org_id: UUID, *, limit: int = 20, offset: int = 0
    ) -> list[PaymentRecord]:
        stmt = (
            select(PaymentRecordRow)
            .where(PaymentRecordRow.organization_id == org_id)
            .order_by(PaymentRecordRow.occurred_at.desc())
            .limit(limit)
            .offset(offset)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_payment(r) for r in rows]

    async def find_by_idempotency_reference(self, reference: str) -> PaymentRecord | None:
        stmt = select(PaymentRecordRow).where(
            PaymentRecordRow.idempotency_reference == reference
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_payment(row) if row is not None else None

    async def last_paid_at(self, subscription_id: UUID) -> datetime | None:
        stmt = select(func.max(PaymentRecordRow.occurred_at)).where(
            PaymentRecordRow.subscription_id == subscription_id,
            PaymentRecordRow.status == PaymentStatus.PAID.value,
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()


def payment_to_row(record: PaymentRecord) -> PaymentRecordRow:
    return PaymentRecordRow(
        id=record.id,
        subscription_id=record.subscription_id,
        organization_id=record.organization_id,
        amount=record.amount,
        currency=record.currency,
        status=record.status.value,
        provider_reference=record.provider_reference,
        idempotency_reference=record.idempotency_reference,
        payment_method=record.payment_method,
        failure_reason=record.failure_reason,
        occurred_at=record.occurred_at,
    )


def _row_to_payment(row: PaymentRecordRow) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        subscription_id=row.subscription_id,
        organization_id=row.organization_id,
        amount=row.amount,
        currency=row.currency,
        status=PaymentStatus(row.status),
        occurred_at=row.occurred_at,
        provider_reference=row.provider_reference,
        idempotency_reference=row.idempotency_reference,
        payment_method=row.payment_method,
        failure_reason=row.failure_reason,
    )
