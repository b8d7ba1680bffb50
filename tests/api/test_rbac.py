"""Table-driven platform RBAC tests.

Each row describes: endpoint, method, role(s), expected HTTP status.
This ensures the Principal + require_user/require_role guards
behave correctly across all protected endpoints.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.conftest import mint_token


# Helper: build auth header (or empty dict for unauthenticated)
def _auth(token: str | None) -> dict[str, str]:
    if token is None:
        return {}
    return {"Authorization": f"Bearer {token}"}


# ---- Table-driven access-control tests ----

_RBAC_CASES = [
    # (endpoint, method, role, expected_status)
    # /v1/plans: public catalog
    ("/v1/plans", "GET", None, 200),
    ("/v1/plans", "GET", "user", 200),
    # /v1/entitlements: any authenticated user
    ("/v1/entitlements/tts", "GET", "user", 200),
    ("/v1/entitlements/tts", "GET", "admin", 200),
    ("/v1/entitlements/tts", "GET", None, 401),
    ("/v1/entitlements/quota/students", "GET", "user", 200),
    ("/v1/entitlements/quota/students", "GET", None, 401),
    # authorize: authenticated users get a decision (403 on the free plan)
    ("/v1/entitlements/tts/authorize", "POST", "user", 403),
    ("/v1/entitlements/tts/authorize", "POST", None, 401),
    # /v1/admin: platform admin only
    ("/v1/admin/subscriptions/stats", "GET", "admin", 200),
    ("/v1/admin/subscriptions/stats", "GET", "user", 403),
    ("/v1/admin/subscriptions/stats", "GET", None, 401),
    ("/v1/admin/renewals/run", "POST", "user", 403),
    ("/v1/admin/renewals/run", "POST", None, 401),
]


def _case_id(case: tuple) -> str:
    endpoint, method, role, expected = case
    role_label = role or "anon"
    return f"{method} {endpoint} [{role_label}] -> {expected}"


@pytest.mark.parametrize(
    "endpoint,method,role,expected",
    _RBAC_CASES,
    ids=[_case_id(c) for c in _RBAC_CASES],
)
def test_rbac(
    client: TestClient,
    endpoint: str,
    method: str,
    role: str | None,
    expected: int,
) -> None:
    token = mint_token(roles=[role]) if role else None
    headers = _auth(token)

    if method == "GET":
        resp = client.get(endpoint, headers=headers)
    elif method == "POST":
        resp = client.post(endpoint, headers=headers)
    else:
        pytest.fail(f"Unsupported method: {method}")

    assert resp.status_code == expected, (
        f"{method} {endpoint} role={role}: expected {expected}, got {resp.status_code}"
    )


def test_garbage_token_is_rejected(client: TestClient) -> None:
    resp = client.get("/v1/entitlements/tts", headers=_auth("not-a-jwt"))
    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"


def test_token_subject_must_be_a_user_id(client: TestClient) -> None:
    token = mint_token(user_id="service-account")
    resp = client.get("/v1/entitlements/tts", headers=_auth(token))
    assert resp.status_code == 401
