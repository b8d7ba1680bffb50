"""Repository singletons for the billing subsystem.

Same rule as the Redis-backed services: check the config at import time,
use PostgreSQL when DATABASE_URL is set, otherwise fall back to in-memory
stores (local dev, tests).  Consumers import the names below and never
construct repos themselves.
"""

from __future__ import annotations

from app.db.engine import async_session_factory
from app.repos.org_membership_repo import InMemoryOrgMembershipRepo, OrgMembershipRepo
from app.repos.payment_ledger_repo import InMemoryPaymentLedger, PaymentLedger
from app.repos.pg_org_membership_repo import PgOrgMembershipRepo
from app.repos.pg_payment_ledger_repo import PgPaymentLedger
from app.repos.pg_plan_repo import PgPlanRepo
from app.repos.pg_subscription_repo import PgSubscriptionRepo
from app.repos.plan_repo import InMemoryPlanRepo, PlanRepo
from app.repos.subscription_repo import InMemorySubscriptionRepo, SubscriptionRepo
from app.services.plan_catalog import DEFAULT_PLANS

# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    plan_repo: PlanRepo = PgPlanRepo(async_session_factory)
    membership_repo: OrgMembershipRepo = PgOrgMembershipRepo(async_session_factory)
    payment_ledger: PaymentLedger = PgPaymentLedger(async_session_factory)
    subscription_repo: SubscriptionRepo = PgSubscriptionRepo(async_session_factory)
else:
    _ledger = InMemoryPaymentLedger()
    plan_repo = InMemoryPlanRepo(DEFAULT_PLANS)
    membership_repo = InMemoryOrgMembershipRepo()
    payment_ledger = _ledger
    subscription_repo = InMemorySubscriptionRepo(_ledger)
