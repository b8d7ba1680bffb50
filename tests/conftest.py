from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.models.organization import OrgMembership
from app.models.plan import Plan
from app.models.subscription import Subscription, SubscriptionStatus
from app.repos.stores import membership_repo, payment_ledger, plan_repo, subscription_repo
from app.services import token_service
from app.services.cache import cache_service
from app.services.payment_gateway import ChargeResult
from app.services.renewal_lock import renewal_lock

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_billing_state() -> None:
    """Clear subscriptions, ledger and memberships between tests.

    The plan catalog is seeded once and never mutated by tests.
    """
    subscription_repo._by_id.clear()  # type: ignore[attr-defined]
    payment_ledger._records.clear()  # type: ignore[attr-defined]
    payment_ledger._by_reference.clear()  # type: ignore[attr-defined]
    membership_repo._store.clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_renewal_lock() -> None:
    if hasattr(renewal_lock, "_held"):
        renewal_lock._held.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    user_id: UUID | str | None = None,
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=str(user_id or uuid4()), roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token() -> str:
    """Token with the platform admin role."""
    return mint_token(roles=["admin"])


# ---------------------------------------------------------------------------
# Billing test helpers
# ---------------------------------------------------------------------------

NOW = datetime(2026, 3, 15, 9, 0, tzinfo=UTC)


def get_plan(plan_key: str) -> Plan:
    plan = asyncio.run(plan_repo.get_by_key(plan_key))
    assert plan is not None
    return plan


def add_member(
    org_id: UUID,
    user_id: UUID,
    org_role: str = "student",
    *,
    status: str = "active",
    created_at: datetime | None = None,
) -> OrgMembership:
    """Add a membership to the in-memory repo."""
    m = OrgMembership.new(
        org_id=org_id,
        user_id=user_id,
        org_role=org_role,
        status=status,
        created_at=created_at,
    )
    asyncio.run(membership_repo.add(m))
    return m


def add_subscription(
    org_id: UUID | None = None,
    *,
    plan_key: str = "pro",
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    period_end: datetime | None = None,
    billing_credential: str | None = "bk_test_123",
    cancel_at_period_end: bool = False,
    plan_id: UUID | None = None,
) -> Subscription:
    """Persist a subscription whose current period ends at ``period_end``."""
    end = period_end or NOW + timedelta(days=10)
    sub = Subscription.new(
        organization_id=org_id or uuid4(),
        plan_id=plan_id or get_plan(plan_key).id,
        billing_credential=billing_credential,
        current_period_start=end - timedelta(days=30),
        current_period_end=end,
        status=status,
    )
    if cancel_at_period_end:
        sub = replace(sub, cancel_at_period_end=True)
    asyncio.run(subscription_repo.add(sub))
    return sub


@dataclass
class StubGateway:
    """Records charges; answers from a queue of results (default: success)."""

    results: list[ChargeResult] = field(default_factory=list)
    calls: list[dict] = field(default_factory=list)
    raise_for: set[str] = field(default_factory=set)

    async def charge(
        self,
        credential: str,
        amount: int,
        idempotency_reference: str,
        *,
        customer_key: str,
        order_name: str,
    ) -> ChargeResult:
        self.calls.append(
            {
                "credential": credential,
                "amount": amount,
                "idempotency_reference": idempotency_reference,
                "customer_key": customer_key,
                "order_name": order_name,
            }
        )
        if credential in self.raise_for:
            raise RuntimeError("provider client blew up")
        if self.results:
            return self.results.pop(0)
        return ChargeResult.ok(f"pay_{len(self.calls)}", "card *4242")


@pytest.fixture
def gateway() -> StubGateway:
    return StubGateway()
