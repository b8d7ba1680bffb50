from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from app.models.plan import Plan
from app.repos.stores import plan_repo

router = APIRouter(prefix="/v1/plans", tags=["plans"])


class PlanOut(BaseModel):
    id: str
    plan_key: str
    name: str
    price_monthly: int
    ai_feedback_enabled: bool
    tts_enabled: bool
    max_students: int
    max_scripts: int
    sort_order: int


def plan_out(plan: Plan) -> PlanOut:
    return PlanOut(
        id=str(plan.id),
        plan_key=plan.plan_key,
        name=plan.name,
        price_monthly=plan.price_monthly,
        ai_feedback_enabled=plan.ai_feedback_enabled,
        tts_enabled=plan.tts_enabled,
        max_students=plan.max_students,
        max_scripts=plan.max_scripts,
        sort_order=plan.sort_order,
    )


@router.get("", response_model=list[PlanOut])
async def list_plans() -> list[PlanOut]:
    """Active plans, cheapest tier first."""
    return [plan_out(p) for p in await plan_repo.list_active()]
