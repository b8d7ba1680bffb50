from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from app.api.dependencies import require_role
from app.models.principal import Principal
from app.repos.stores import plan_repo, subscription_repo
from app.services import subscription_service
from app.services.billing_errors import PaymentConfigurationError, RenewalPassError
from app.services.renewal_service import run_renewal_pass

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class RenewalSummaryOut(BaseModel):
    renewed: int
    failed: int
    canceled: int
    skipped: int


class PlanCountOut(BaseModel):
    plan_key: str
    plan_name: str
    count: int


class SubscriptionStatsOut(BaseModel):
    total_subscribers: int
    mrr: int
    arr: int
    churn_rate: float
    plan_distribution: list[PlanCountOut]


@router.post("/renewals/run", response_model=RenewalSummaryOut)
async def admin_run_renewals(
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> RenewalSummaryOut:
    """Run one renewal pass now (same pass the scheduled worker runs)."""
    logger.info("Manual renewal pass triggered by user=%s", principal.user_id)
    try:
        summary = await run_renewal_pass()
    except (PaymentConfigurationError, RenewalPassError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Renewal pass aborted: {exc}",
        ) from None
    return RenewalSummaryOut(**summary.as_dict())


@router.get("/subscriptions/stats", response_model=SubscriptionStatsOut)
async def admin_subscription_stats(
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> SubscriptionStatsOut:
    logger.info("Subscription stats requested by user=%s", principal.user_id)
    stats = await subscription_service.subscription_stats(subscription_repo, plan_repo)
    return SubscriptionStatsOut(
        total_subscribers=stats.total_subscribers,
        mrr=stats.mrr,
        arr=stats.arr,
        churn_rate=stats.churn_rate,
        plan_distribution=[
            PlanCountOut(plan_key=p.plan_key, plan_name=p.plan_name, count=p.count)
            for p in stats.plan_distribution
        ],
    )
