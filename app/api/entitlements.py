"""Feature gate endpoints.

GET  /v1/entitlements/{feature}            decision for the caller
GET  /v1/entitlements/quota/{kind}         students / scripts limit
POST /v1/entitlements/{feature}/authorize  204 or 403 upgrade-required

Other services call ``authorize`` before running a paid feature (AI
feedback, TTS).  The two failure modes stay distinct: 403 means "this
plan does not include it, show the upgrade screen", 503 means "we could
not tell, try again".
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import require_user
from app.models.principal import Principal
from app.services.entitlement_service import (
    REASON_FEATURE_NOT_AVAILABLE,
    EntitlementDecision,
    check_entitlement,
    entitlement_resolver,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/entitlements", tags=["entitlements"])

_UPGRADE_MESSAGE = "This feature is not included in your current plan. Upgrade to use it."


class EntitlementOut(BaseModel):
    feature: str
    allowed: bool
    plan_key: str
    org_id: str | None
    reason: str | None


async def _decide(principal: Principal, feature: str) -> EntitlementDecision:
    try:
        return await check_entitlement(UUID(principal.user_id), feature)
    except (SQLAlchemyError, OSError):
        logger.exception("Entitlement check failed for user=%s", principal.user_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement check temporarily unavailable",
        ) from None


class QuotaOut(BaseModel):
    kind: str
    plan_key: str
    limit: int


@router.get("/quota/{kind}", response_model=QuotaOut)
async def get_quota(
    kind: Literal["students", "scripts"],
    principal: Annotated[Principal, Depends(require_user)],
) -> QuotaOut:
    """Quota limit that applies to the caller under the governing plan."""
    try:
        plan_key, limit = await entitlement_resolver.quota(UUID(principal.user_id), kind)
    except (SQLAlchemyError, OSError):
        logger.exception("Quota lookup failed for user=%s", principal.user_id)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Quota lookup temporarily unavailable",
        ) from None
    return QuotaOut(kind=kind, plan_key=plan_key, limit=limit)


@router.get("/{feature}", response_model=EntitlementOut)
async def get_entitlement(
    feature: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> EntitlementOut:
    decision = await _decide(principal, feature)
    return EntitlementOut(
        feature=feature,
        allowed=decision.allowed,
        plan_key=decision.plan_key,
        org_id=str(decision.org_id) if decision.org_id else None,
        reason=decision.reason,
    )


@router.post(
    "/{feature}/authorize",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={403: {"description": "Feature not available on the current plan"}},
)
async def authorize_feature(
    feature: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> Response:
    decision = await _decide(principal, feature)
    if decision.allowed:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    logger.info(
        "Feature %s denied for user=%s (%s)",
        feature,
        principal.user_id,
        decision.reason,
        extra={"feature": feature},
    )
    # Every denial is an upgrade prompt for the client, including
    # features the catalog does not know.
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={
            "code": REASON_FEATURE_NOT_AVAILABLE,
            "message": _UPGRADE_MESSAGE,
            "plan_key": decision.plan_key,
            "reason": decision.reason,
        },
    )
