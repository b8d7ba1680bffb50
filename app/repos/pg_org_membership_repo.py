"""PostgreSQL implementation of OrgMembershipRepo.

Memberships are written by the org management service; billing reads
them to find the governing organization and to guard org-scoped routes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.tables import OrgMembershipRow
from app.models.organization import OrgMembership


class PgOrgMembershipRepo:
    """Satisfies the OrgMembershipRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, org_id: UUID, user_id: UUID) -> OrgMembership | None:
        stmt = select(OrgMembershipRow).where(
            OrgMembershipRow.org_id == org_id,
            OrgMembershipRow.user_id == user_id,
            OrgMembershipRow.deleted_at.is_(None),
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_membership(row) if row is not None else None

    async def add(self, membership: OrgMembership) -> None:
        async with self._session_factory() as session, session.begin():
            # merge: re-adding a soft-deleted member revives the row
            await session.merge(
                OrgMembershipRow(
                    org_id=membership.org_id,
                    user_id=membership.user_id,
                    org_role=membership.org_role,
                    status=membership.status,
                    created_at=membership.created_at,
                    deleted_at=None,
                )
            )

    async def remove(self, org_id: UUID, user_id: UUID) -> bool:
        stmt = (
            update(OrgMembershipRow)
            .where(
                OrgMembershipRow.org_id == org_id,
                OrgMembershipRow.user_id == user_id,
                OrgMembershipRow.deleted_at.is_(None),
            )
            .values(deleted_at=datetime.now(UTC))
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def list_by_user(self, user_id: UUID) -> list[OrgMembership]:
        stmt = select(OrgMembershipRow).where(
            OrgMembershipRow.user_id == user_id,
            OrgMembershipRow.deleted_at.is_(None),
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_membership(r) for r in rows]


def _row_to_membership(row: OrgMembershipRow) -> OrgMembership:
    return OrgMembership(
        org_id=row.org_id,
        user_id=row.user_id,
        org_role=row.org_role,
        created_at=row.created_at,
        status=row.status,
        deleted_at=row.deleted_at,
    )
