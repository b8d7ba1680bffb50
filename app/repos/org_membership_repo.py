from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID

from app.models.organization import OrgMembership


class OrgMembershipRepo(Protocol):
    async def get(self, org_id: UUID, user_id: UUID) -> OrgMembership | None: ...
    async def add(self, membership: OrgMembership) -> None: ...
    async def remove(self, org_id: UUID, user_id: UUID) -> bool: ...
    async def list_by_user(self, user_id: UUID) -> list[OrgMembership]: ...


class InMemoryOrgMembershipRepo:
    def __init__(self) -> None:
        self._store: dict[tuple[UUID, UUID], OrgMembership] = {}

    async def get(self, org_id: UUID, user_id: UUID) -> OrgMembership | None:
        m = self._store.get((org_id, user_id))
        if m is None or m.deleted_at is not None:
            return None
        return m

    async def add(self, membership: OrgMembership) -> None:
        key = (membership.org_id, membership.user_id)
        existing = self._store.get(key)
        if existing is not None and existing.deleted_at is None:
            raise ValueError("membership already exists")
        self._store[key] = membership

    async def remove(self, org_id: UUID, user_id: UUID) -> bool:
        """Soft-delete: the row stays, deleted_at is stamped."""
        key = (org_id, user_id)
        existing = self._store.get(key)
        if existing is None or existing.deleted_at is not None:
            return False
        self._store[key] = replace(existing, deleted_at=datetime.now(UTC))
        return True

    async def list_by_user(self, user_id: UUID) -> list[OrgMembership]:
        return [
            m
            for m in self._store.values()
            if m.user_id == user_id and m.deleted_at is None
        ]
