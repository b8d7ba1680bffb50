from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import auth

# ---- 404: undefined routes ----


def test_undefined_route_returns_404(client: TestClient) -> None:
    resp = client.get("/nonexistent")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Not Found"}


def test_undefined_nested_route_returns_404(client: TestClient) -> None:
    resp = client.get("/api/v2/subscriptions")
    assert resp.status_code == 404


# ---- 405: wrong HTTP method on existing routes ----


def test_delete_plans_returns_405(client: TestClient) -> None:
    resp = client.delete("/v1/plans")
    assert resp.status_code == 405


def test_put_health_returns_405(client: TestClient) -> None:
    resp = client.put("/health", json={"status": "bad"})
    assert resp.status_code == 405


def test_get_renewal_run_returns_405(client: TestClient, admin_token: str) -> None:
    resp = client.get("/v1/admin/renewals/run", headers=auth(admin_token))
    assert resp.status_code == 405


# ---- 422: malformed path parameters ----


def test_non_uuid_org_id_returns_422(client: TestClient, admin_token: str) -> None:
    resp = client.get("/v1/orgs/not-a-uuid/subscription", headers=auth(admin_token))
    assert resp.status_code == 422


def test_unknown_quota_kind_returns_422(client: TestClient, admin_token: str) -> None:
    resp = client.get("/v1/entitlements/quota/teachers", headers=auth(admin_token))
    assert resp.status_code == 422
