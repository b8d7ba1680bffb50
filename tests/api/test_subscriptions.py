from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

from fastapi.testclient import TestClient

from app.models.subscription import PaymentRecord, SubscriptionStatus
from app.repos.stores import payment_ledger, subscription_repo
from tests.conftest import add_member, add_subscription, auth, get_plan, mint_token


def _org(role: str = "owner", **sub_kwargs):
    """Subscribed org plus a member token with ``role``."""
    org_id, user_id = uuid4(), uuid4()
    add_member(org_id, user_id, role)
    sub = add_subscription(
        org_id, period_end=datetime.now(UTC) + timedelta(days=10), **sub_kwargs
    )
    return org_id, sub, auth(mint_token(user_id))


def _paid(sub, days_ago: int, amount: int = 59000) -> PaymentRecord:
    record = PaymentRecord.paid(
        subscription=sub,
        amount=amount,
        currency="KRW",
        occurred_at=datetime.now(UTC) - timedelta(days=days_ago),
        provider_reference=f"pay_{days_ago}",
        idempotency_reference=f"ref-{sub.id}-{days_ago}",
        payment_method="card *4242",
    )
    asyncio.run(payment_ledger.append(record))
    return record


# ---- GET subscription ----


def test_member_sees_subscription_overview(client: TestClient) -> None:
    org_id, sub, headers = _org("student")
    _paid(sub, days_ago=20)

    resp = client.get(f"/v1/orgs/{org_id}/subscription", headers=headers)

    assert resp.status_code == 200
    data = resp.json()
    assert data["subscription"]["id"] == str(sub.id)
    assert data["subscription"]["status"] == "active"
    assert data["subscription"]["cancel_at_period_end"] is False
    assert data["plan"]["plan_key"] == "pro"
    assert data["days_since_last_paid"] == 20


def test_overview_never_paid(client: TestClient) -> None:
    org_id, _, headers = _org("teacher", status=SubscriptionStatus.TRIALING)
    data = client.get(f"/v1/orgs/{org_id}/subscription", headers=headers).json()
    assert data["subscription"]["status"] == "trialing"
    assert data["last_paid_at"] is None
    assert data["days_since_last_paid"] is None


def test_org_without_live_subscription_is_404(client: TestClient) -> None:
    org_id, user_id = uuid4(), uuid4()
    add_member(org_id, user_id, "owner")
    add_subscription(org_id, status=SubscriptionStatus.CANCELED)

    resp = client.get(f"/v1/orgs/{org_id}/subscription", headers=auth(mint_token(user_id)))
    assert resp.status_code == 404


# ---- cancel / resume ----


def test_owner_cancels_at_period_end(client: TestClient) -> None:
    org_id, sub, headers = _org("owner")

    resp = client.post(f"/v1/orgs/{org_id}/subscription/cancel", headers=headers)

    assert resp.status_code == 200
    data = resp.json()
    assert data["cancel_at_period_end"] is True
    assert data["status"] == "active"
    stored = asyncio.run(subscription_repo.get(sub.id))
    assert stored.cancel_at_period_end is True
    assert stored.current_period_end == sub.current_period_end


def test_cancel_twice_is_idempotent(client: TestClient) -> None:
    org_id, _, headers = _org("owner")
    client.post(f"/v1/orgs/{org_id}/subscription/cancel", headers=headers)
    resp = client.post(f"/v1/orgs/{org_id}/subscription/cancel", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["cancel_at_period_end"] is True


def test_owner_resumes_pending_cancellation(client: TestClient) -> None:
    org_id, sub, headers = _org("owner", cancel_at_period_end=True)

    resp = client.post(f"/v1/orgs/{org_id}/subscription/resume", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["cancel_at_period_end"] is False
    assert asyncio.run(subscription_repo.get(sub.id)).cancel_at_period_end is False


def test_cancel_past_due_is_conflict(client: TestClient) -> None:
    org_id, _, headers = _org("owner", status=SubscriptionStatus.PAST_DUE)
    resp = client.post(f"/v1/orgs/{org_id}/subscription/cancel", headers=headers)
    assert resp.status_code == 409


def test_student_cannot_cancel(client: TestClient) -> None:
    org_id, sub, headers = _org("student")
    resp = client.post(f"/v1/orgs/{org_id}/subscription/cancel", headers=headers)
    assert resp.status_code == 403
    assert asyncio.run(subscription_repo.get(sub.id)) == sub


def test_cancel_without_subscription_is_404(client: TestClient) -> None:
    org_id, user_id = uuid4(), uuid4()
    add_member(org_id, user_id, "owner")
    resp = client.post(
        f"/v1/orgs/{org_id}/subscription/cancel", headers=auth(mint_token(user_id))
    )
    assert resp.status_code == 404


# ---- payments ----


def test_owner_lists_payments_newest_first(client: TestClient) -> None:
    org_id, sub, headers = _org("owner")
    older = _paid(sub, days_ago=40)
    newer = _paid(sub, days_ago=10)

    resp = client.get(f"/v1/orgs/{org_id}/payments", headers=headers)

    assert resp.status_code == 200
    ids = [p["id"] for p in resp.json()]
    assert ids == [str(newer.id), str(older.id)]
    assert resp.json()[0]["status"] == "paid"
    assert resp.json()[0]["payment_method"] == "card *4242"


def test_payments_pagination(client: TestClient) -> None:
    org_id, sub, headers = _org("owner")
    _paid(sub, days_ago=30)
    middle = _paid(sub, days_ago=20)
    _paid(sub, days_ago=10)

    resp = client.get(f"/v1/orgs/{org_id}/payments?limit=1&offset=1", headers=headers)
    (only,) = resp.json()
    assert only["id"] == str(middle.id)


def test_payments_are_scoped_to_the_org(client: TestClient) -> None:
    org_id, _, headers = _org("owner")
    _, other_sub, _ = _org("owner")
    _paid(other_sub, days_ago=1)

    assert client.get(f"/v1/orgs/{org_id}/payments", headers=headers).json() == []


def test_payments_never_expose_billing_credential(client: TestClient) -> None:
    org_id, sub, headers = _org("owner")
    _paid(sub, days_ago=1)
    assert "bk_test_123" not in client.get(f"/v1/orgs/{org_id}/payments", headers=headers).text
    assert "bk_test_123" not in client.get(f"/v1/orgs/{org_id}/subscription", headers=headers).text


def test_plan_in_overview_matches_catalog(client: TestClient) -> None:
    org_id, _, headers = _org("owner", plan_key="academy")
    data = client.get(f"/v1/orgs/{org_id}/subscription", headers=headers).json()
    assert data["plan"]["id"] == str(get_plan("academy").id)
