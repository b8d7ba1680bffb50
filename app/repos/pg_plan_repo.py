"""PostgreSQL implementation of PlanRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.tables import PlanRow
from app.models.plan import Plan


class PgPlanRepo:
    """Satisfies the PlanRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, plan_id: UUID) -> Plan | None:
        async with self._session_factory() as session:
            row = await session.get(PlanRow, plan_id)
        return _row_to_plan(row) if row is not None else None

    async def get_by_key(self, plan_key: str) -> Plan | None:
        stmt = select(PlanRow).where(PlanRow.plan_key == plan_key)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_plan(row) if row is not None else None

    async def list_active(self) -> list[Plan]:
        stmt = (
            select(PlanRow)
            .where(PlanRow.is_active.is_(True))
            .order_by(PlanRow.sort_order)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_plan(r) for r in rows]

    async def add(self, plan: Plan) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(
                PlanRow(
                    id=plan.id,
                    plan_key=plan.plan_key,
                    name=plan.name,
                    price_monthly=plan.price_monthly,
                    ai_feedback_enabled=plan.ai_feedback_enabled,
                    tts_enabled=plan.tts_enabled,
                    max_students=plan.max_students,
                    max_scripts=plan.max_scripts,
                    sort_order=plan.sort_order,
                    is_active=plan.is_active,
                )
            )


def _row_to_plan(row: PlanRow) -> Plan:
    return Plan(
        id=row.id,
        plan_key=row.plan_key,
        name=row.name,
        price_monthly=row.price_monthly,
        ai_feedback_enabled=row.ai_feedback_enabled,
        tts_enabled=row.tts_enabled,
        max_students=row.max_students,
        max_scripts=row.max_scripts,
        sort_order=row.sort_order,
        is_active=row.is_active,
    )
