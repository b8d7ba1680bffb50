"""Plan catalog: the read model every other billing component consults.

Plans are looked up by reference (id from a subscription, key from a
checkout request) and never mutated by the renewal engine.  Tier order is
the explicit ``sort_order`` column, so "basic" < "pro" < "academy" holds
regardless of how the keys happen to spell.
"""

from __future__ import annotations

from app.models.plan import FREE_PLAN_KEY, FREE_QUOTAS, Plan

# Seed catalog for local dev and tests; the migration inserts the same rows.
DEFAULT_PLANS: tuple[Plan, ...] = (
    Plan.new(
        plan_key=FREE_PLAN_KEY,
        name="Free",
        price_monthly=0,
        max_students=FREE_QUOTAS["students"],
        max_scripts=FREE_QUOTAS["scripts"],
        sort_order=0,
    ),
    Plan.new(
        plan_key="basic",
        name="Basic",
        price_monthly=29000,
        tts_enabled=True,
        max_students=20,
        max_scripts=100,
        sort_order=1,
    ),
    Plan.new(
        plan_key="pro",
        name="Pro",
        price_monthly=59000,
        ai_feedback_enabled=True,
        tts_enabled=True,
        max_students=50,
        max_scripts=500,
        sort_order=2,
    ),
    Plan.new(
        plan_key="academy",
        name="Academy",
        price_monthly=149000,
        ai_feedback_enabled=True,
        tts_enabled=True,
        max_students=300,
        max_scripts=5000,
        sort_order=3,
    ),
)


def quota_for(plan: Plan | None, kind: str) -> int:
    """Quota limit for ``kind`` ("students" or "scripts").

    With no plan in effect the free-tier limits apply.
    """
    if plan is None:
        if kind not in FREE_QUOTAS:
            raise ValueError(f"unknown quota kind {kind!r}")
        return FREE_QUOTAS[kind]
    return plan.quota(kind)
