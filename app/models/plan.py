from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

# Features that can be gated by a plan, mapped to the Plan attribute that
# enables them.  Anything not listed here is an unknown feature.
FEATURE_FLAGS: dict[str, str] = {
    "ai_feedback": "ai_feedback_enabled",
    "tts": "tts_enabled",
}

# What a user gets when there is no paid context at all.
FREE_DEFAULTS: dict[str, bool] = {
    "ai_feedback": False,
    "tts": False,
}

FREE_PLAN_KEY = "free"

# Quotas applied when no plan is in effect.
FREE_QUOTAS: dict[str, int] = {
    "students": 3,
    "scripts": 5,
}


@dataclass(frozen=True, slots=True)
class Plan:
    """Catalog entry.  Immutable: a price change is a new plan version."""

    id: UUID
    plan_key: str
    name: str
    price_monthly: int  # minor-unit-free amount in the billing currency (KRW)
    ai_feedback_enabled: bool
    tts_enabled: bool
    max_students: int
    max_scripts: int
    sort_order: int  # explicit tier order, lowest first
    is_active: bool = True

    @staticmethod
    def new(
        *,
        plan_key: str,
        name: str,
        price_monthly: int,
        ai_feedback_enabled: bool = False,
        tts_enabled: bool = False,
        max_students: int = FREE_QUOTAS["students"],
        max_scripts: int = FREE_QUOTAS["scripts"],
        sort_order: int = 0,
    ) -> Plan:
        if price_monthly < 0:
            raise ValueError("price_monthly must be >= 0")
        return Plan(
            id=uuid4(),
            plan_key=plan_key,
            name=name,
            price_monthly=price_monthly,
            ai_feedback_enabled=ai_feedback_enabled,
            tts_enabled=tts_enabled,
            max_students=max_students,
            max_scripts=max_scripts,
            sort_order=sort_order,
        )

    def allows(self, feature: str) -> bool | None:
        """Return the flag for a feature, or None if the feature is unknown."""
        attr = FEATURE_FLAGS.get(feature)
        if attr is None:
            return None
        return bool(getattr(self, attr))

    def quota(self, kind: str) -> int:
        if kind == "students":
            return self.max_students
        if kind == "scripts":
            return self.max_scripts
        raise ValueError(f"unknown quota kind {kind!r}")
