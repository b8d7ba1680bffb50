from __future__ import annotations

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from app.models.plan import Plan


class PlanRepo(Protocol):
    async def get_by_id(self, plan_id: UUID) -> Plan | None: ...
    async def get_by_key(self, plan_key: str) -> Plan | None: ...
    async def list_active(self) -> list[Plan]: ...
    async def add(self, plan: Plan) -> None: ...


class InMemoryPlanRepo:
    def __init__(self, plans: Iterable[Plan] = ()) -> None:
        self._by_id: dict[UUID, Plan] = {}
        self._by_key: dict[str, Plan] = {}
        for plan in plans:
            self._put(plan)

    def _put(self, plan: Plan) -> None:
        if plan.plan_key in self._by_key:
            raise ValueError("plan_key already exists")
        self._by_id[plan.id] = plan
        self._by_key[plan.plan_key] = plan

    async def get_by_id(self, plan_id: UUID) -> Plan | None:
        return self._by_id.get(plan_id)

    async def get_by_key(self, plan_key: str) -> Plan | None:
        return self._by_key.get(plan_key)

    async def list_active(self) -> list[Plan]:
        # Tier order comes from sort_order, never from the key's spelling.
        return sorted(
            (p for p in self._by_id.values() if p.is_active),
            key=lambda p: p.sort_order,
        )

    async def add(self, plan: Plan) -> None:
        self._put(plan)
