"""Entitlement resolver: may this user use this feature right now?

Decision order
--------------
  1. Governing org (membership resolver).  None -> free defaults.
  2. Live subscription of that org (active, trialing or past_due).
     None -> free defaults.  past_due still counts: access continues
     while the renewal engine retries the charge.
  3. Plan of that subscription.  Missing -> free defaults.
  4. Feature flag on the plan.  Unknown feature -> denied.

The resolver only reads.  A decision is a value, not an exception, so
"no org" and "feature off" are ordinary answers; storage errors are NOT
answers and propagate to the caller (the API maps them to 503, never to
a denial that would tell a paying user to upgrade).

Decisions are cached briefly through the read-through cache service.
TTL expiry is the only invalidation for per-user keys; the renewal pass
clears the whole ``entitlement:`` namespace after it cancels anything.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from uuid import UUID

from redis.exceptions import RedisError

from app.core.config import SETTINGS
from app.core.metrics import CACHE_OPERATIONS, ENTITLEMENT_CHECKS
from app.models.plan import FEATURE_FLAGS, FREE_DEFAULTS, FREE_PLAN_KEY, Plan
from app.repos.org_membership_repo import OrgMembershipRepo
from app.repos.plan_repo import PlanRepo
from app.repos.stores import membership_repo, plan_repo, subscription_repo
from app.repos.subscription_repo import SubscriptionRepo
from app.services.cache import CacheService, cache_service
from app.services.membership_service import resolve_governing_org
from app.services.plan_catalog import quota_for

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "entitlement:"

REASON_NO_ORG = "NO_ORG"
REASON_NO_SUBSCRIPTION = "NO_SUBSCRIPTION"
REASON_UNKNOWN_FEATURE = "UNKNOWN_FEATURE"
REASON_FEATURE_NOT_AVAILABLE = "FEATURE_NOT_AVAILABLE"


@dataclass(frozen=True, slots=True)
class EntitlementDecision:
    allowed: bool
    plan_key: str
    org_id: UUID | None = None
    reason: str | None = None

    def to_json(self) -> str:
        data = asdict(self)
        data["org_id"] = str(self.org_id) if self.org_id else None
        return json.dumps(data)

    @staticmethod
    def from_json(raw: str) -> EntitlementDecision:
        data = json.loads(raw)
        org_id = data.get("org_id")
        return EntitlementDecision(
            allowed=bool(data["allowed"]),
            plan_key=data["plan_key"],
            org_id=UUID(org_id) if org_id else None,
            reason=data.get("reason"),
        )


def _free_decision(feature: str, org_id: UUID | None, reason: str) -> EntitlementDecision:
    if feature not in FEATURE_FLAGS:
        return EntitlementDecision(False, FREE_PLAN_KEY, org_id, REASON_UNKNOWN_FEATURE)
    return EntitlementDecision(FREE_DEFAULTS.get(feature, False), FREE_PLAN_KEY, org_id, reason)


class EntitlementResolver:
    def __init__(
        self,
        *,
        memberships: OrgMembershipRepo,
        subscriptions: SubscriptionRepo,
        plans: PlanRepo,
        cache: CacheService | None = None,
        cache_ttl_seconds: int = 0,
    ) -> None:
        self._memberships = memberships
        self._subscriptions = subscriptions
        self._plans = plans
        self._cache = cache if cache_ttl_seconds > 0 else None
        self._cache_ttl = cache_ttl_seconds

    async def check(self, user_id: UUID, feature: str) -> EntitlementDecision:
        cache_key = f"{CACHE_KEY_PREFIX}{user_id}:{feature}"

        cached = await self._cache_get(cache_key)
        if cached is not None:
            CACHE_OPERATIONS.labels(operation="hit").inc()
            decision = EntitlementDecision.from_json(cached)
        else:
            if self._cache is not None:
                CACHE_OPERATIONS.labels(operation="miss").inc()
            decision = await self._resolve(user_id, feature)
            # Arbitrary feature strings would fill the cache with denials.
            if decision.reason != REASON_UNKNOWN_FEATURE:
                await self._cache_set(cache_key, decision.to_json())

        ENTITLEMENT_CHECKS.labels(
            feature=feature if feature in FEATURE_FLAGS else "unknown",
            allowed=str(decision.allowed).lower(),
            reason=decision.reason or "none",
        ).inc()
        return decision

    async def _resolve(self, user_id: UUID, feature: str) -> EntitlementDecision:
        org_id = await resolve_governing_org(self._memberships, user_id)
        if org_id is None:
            return _free_decision(feature, None, REASON_NO_ORG)

        subscription = await self._subscriptions.get_live_for_org(org_id)
        if subscription is None:
            return _free_decision(feature, org_id, REASON_NO_SUBSCRIPTION)

        plan = await self._plans.get_by_id(subscription.plan_id)
        if plan is None:
            logger.warning(
                "Subscription references unknown plan %s; using free defaults",
                subscription.plan_id,
                extra={"subscription_id": str(subscription.id)},
            )
            return _free_decision(feature, org_id, REASON_NO_SUBSCRIPTION)

        flag = plan.allows(feature)
        if flag is None:
            return EntitlementDecision(False, plan.plan_key, org_id, REASON_UNKNOWN_FEATURE)
        if not flag:
            return EntitlementDecision(
                False, plan.plan_key, org_id, REASON_FEATURE_NOT_AVAILABLE
            )
        return EntitlementDecision(True, plan.plan_key, org_id)

    async def quota(self, user_id: UUID, kind: str) -> tuple[str, int]:
        """(plan_key, limit) for a quota kind ("students" or "scripts")."""
        plan = await self._governing_plan(user_id)
        return (plan.plan_key if plan else FREE_PLAN_KEY), quota_for(plan, kind)

    async def _governing_plan(self, user_id: UUID) -> Plan | None:
        org_id = await resolve_governing_org(self._memberships, user_id)
        if org_id is None:
            return None
        subscription = await self._subscriptions.get_live_for_org(org_id)
        if subscription is None:
            return None
        return await self._plans.get_by_id(subscription.plan_id)

    # A cache outage degrades to computing every decision; it never fails
    # the check.

    async def _cache_get(self, key: str) -> str | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(key)
        except RedisError:
            logger.warning("Entitlement cache read failed; computing decision", exc_info=True)
            return None

    async def _cache_set(self, key: str, value: str) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, value, self._cache_ttl)
        except RedisError:
            logger.warning("Entitlement cache write failed", exc_info=True)

    async def invalidate_all(self) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.delete_pattern(f"{CACHE_KEY_PREFIX}*")
        except RedisError:
            logger.warning("Entitlement cache invalidation failed", exc_info=True)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

entitlement_resolver = EntitlementResolver(
    memberships=membership_repo,
    subscriptions=subscription_repo,
    plans=plan_repo,
    cache=cache_service,
    cache_ttl_seconds=SETTINGS.entitlement_cache_ttl_seconds,
)


async def check_entitlement(user_id: UUID, feature: str) -> EntitlementDecision:
    """Entitlement decision for ``user_id`` against the configured stores."""
    return await entitlement_resolver.check(user_id, feature)
