"""PostgreSQL implementation of SubscriptionRepo.

apply() is the only write path for lifecycle changes.  It runs a
conditional UPDATE (``WHERE status = :expected AND current_period_end =
:expected ...``) and the ledger INSERT in one transaction:

  - two overlapping renewal passes cannot both advance the same period;
    the loser's UPDATE matches zero rows and it backs off
  - a period is never advanced without its ``paid`` record, and a record
    is never written for a transition that did not happen
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.tables import SubscriptionRow
from app.models.subscription import (
    ENTITLED_STATUSES,
    RENEWABLE_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from app.repos.pg_payment_ledger_repo import payment_to_row
from app.services.subscription_state import Transition

logger = logging.getLogger(__name__)


def _values(statuses: Iterable[SubscriptionStatus]) -> list[str]:
    return [s.value for s in statuses]


class PgSubscriptionRepo:
    """Satisfies the SubscriptionRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, subscription_id: UUID) -> Subscription | None:
        async with self._session_factory() as session:
            row = await session.get(SubscriptionRow, subscription_id)
        return _row_to_subscription(row) if row is not None else None

    async def get_live_for_org(self, org_id: UUID) -> Subscription | None:
        stmt = (
            select(SubscriptionRow)
            .where(
                SubscriptionRow.organization_id == org_id,
                SubscriptionRow.status.in_(_values(ENTITLED_STATUSES)),
            )
            .order_by(SubscriptionRow.current_period_end.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_subscription(row) if row is not None else None

    async def list_due_for_renewal(self, due_by: datetime) -> list[Subscription]:
        stmt = (
            select(SubscriptionRow)
            .where(
                SubscriptionRow.current_period_end <= due_by,
                SubscriptionRow.cancel_at_period_end.is_(False),
                SubscriptionRow.status.in_(_values(RENEWABLE_STATUSES)),
            )
            .order_by(SubscriptionRow.current_period_end)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_subscription(r) for r in rows]

    async def list_expiring_cancellations(self, now: datetime) -> list[Subscription]:
        stmt = select(SubscriptionRow).where(
            SubscriptionRow.cancel_at_period_end.is_(True),
            SubscriptionRow.current_period_end <= now,
            SubscriptionRow.status == SubscriptionStatus.ACTIVE.value,
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_subscription(r) for r in rows]

    async def list_by_status(
        self, statuses: Iterable[SubscriptionStatus]
    ) -> list[Subscription]:
        stmt = select(SubscriptionRow).where(
            SubscriptionRow.status.in_(_values(statuses))
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_subscription(r) for r in rows]

    async def add(self, subscription: Subscription) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                SubscriptionRow(
                    id=subscription.id,
                    organization_id=subscription.organization_id,
                    plan_id=subscription.plan_id,
                    status=subscription.status.value,
                    billing_credential=subscription.billing_credential,
                    current_period_start=subscription.current_period_start,
                    current_period_end=subscription.current_period_end,
                    cancel_at_period_end=subscription.cancel_at_period_end,
                    canceled_at=subscription.canceled_at,
                    updated_at=subscription.updated_at,
                )
            )

    async def apply(self, transition: Transition) -> bool:
        before, after = transition.before, transition.after
        stmt = (
            update(SubscriptionRow)
            .where(
                SubscriptionRow.id == before.id,
                SubscriptionRow.status == before.status.value,
                SubscriptionRow.current_period_end == before.current_period_end,
                SubscriptionRow.cancel_at_period_end == before.cancel_at_period_end,
            )
            .values(
                status=after.status.value,
                current_period_start=after.current_period_start,
                current_period_end=after.current_period_end,
                cancel_at_period_end=after.cancel_at_period_end,
                canceled_at=after.canceled_at,
                updated_at=after.updated_at,
            )
        )
        try:
            async with self._session_factory() as session, session.begin():
                result = await session.execute(stmt)
                if result.rowcount != 1:
                    return False
                if transition.payment is not None:
                    session.add(payment_to_row(transition.payment))
                    await session.flush()
        except IntegrityError:
            # Duplicate idempotency reference: another pass already
            # recorded this attempt.  The UPDATE was rolled back with it.
            logger.warning(
                "Ledger already holds this attempt; transition %s dropped",
                transition.event,
                extra={"subscription_id": str(before.id)},
            )
            return False
        return True


def _row_to_subscription(row: SubscriptionRow) -> Subscription:
    return Subscription(
        id=row.id,
        organization_id=row.organization_id,
        plan_id=row.plan_id,
        status=SubscriptionStatus(row.status),
        billing_credential=row.billing_credential,
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        cancel_at_period_end=row.cancel_at_period_end,
        canceled_at=row.canceled_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
