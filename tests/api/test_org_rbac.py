"""Table-driven org-scoped RBAC tests.

Each row describes: endpoint pattern, method, org_role, expected HTTP status.
Tests ensure that the org-scoped guards (resolve_org_principal,
require_org_role) behave correctly across the subscription endpoints.
"""

from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.repos.stores import membership_repo
from tests.conftest import add_member, add_subscription, auth, mint_token


def _setup_org_with_roles() -> tuple[str, dict[str, str]]:
    """Create a subscribed org and users with every org role. Return (org_id, role->token map)."""
    org_id = uuid4()
    add_subscription(org_id, plan_key="basic")

    tokens: dict[str, str] = {}
    for role in ("owner", "teacher", "student"):
        user_id = uuid4()
        add_member(org_id, user_id, role)
        tokens[role] = mint_token(user_id, roles=["user"])

    # invited but not yet accepted
    pending = uuid4()
    add_member(org_id, pending, "owner", status="pending")
    tokens["pending_owner"] = mint_token(pending, roles=["user"])

    # non-member: valid user but no membership in this org
    tokens["non_member"] = mint_token(roles=["user"])

    # platform admin: not a member but has admin platform role
    tokens["platform_admin"] = mint_token(roles=["admin"])

    return str(org_id), tokens


# (endpoint_template, method, role_key, expected_status)
_ORG_RBAC_CASES: list[tuple[str, str, str | None, int]] = [
    # GET subscription: any member
    ("/v1/orgs/{org_id}/subscription", "GET", "owner", 200),
    ("/v1/orgs/{org_id}/subscription", "GET", "teacher", 200),
    ("/v1/orgs/{org_id}/subscription", "GET", "student", 200),
    ("/v1/orgs/{org_id}/subscription", "GET", "platform_admin", 200),
    ("/v1/orgs/{org_id}/subscription", "GET", "pending_owner", 403),
    ("/v1/orgs/{org_id}/subscription", "GET", "non_member", 403),
    ("/v1/orgs/{org_id}/subscription", "GET", None, 401),
    # GET payments: owner only
    ("/v1/orgs/{org_id}/payments", "GET", "owner", 200),
    ("/v1/orgs/{org_id}/payments", "GET", "teacher", 403),
    ("/v1/orgs/{org_id}/payments", "GET", "student", 403),
    ("/v1/orgs/{org_id}/payments", "GET", "platform_admin", 200),
    ("/v1/orgs/{org_id}/payments", "GET", "non_member", 403),
    ("/v1/orgs/{org_id}/payments", "GET", None, 401),
    # POST cancel: owner only
    ("/v1/orgs/{org_id}/subscription/cancel", "POST", "owner", 200),
    ("/v1/orgs/{org_id}/subscription/cancel", "POST", "teacher", 403),
    ("/v1/orgs/{org_id}/subscription/cancel", "POST", "student", 403),
    ("/v1/orgs/{org_id}/subscription/cancel", "POST", "platform_admin", 200),
    ("/v1/orgs/{org_id}/subscription/cancel", "POST", "pending_owner", 403),
    ("/v1/orgs/{org_id}/subscription/cancel", "POST", None, 401),
    # POST resume: owner only (no pending cancellation is a no-op)
    ("/v1/orgs/{org_id}/subscription/resume", "POST", "owner", 200),
    ("/v1/orgs/{org_id}/subscription/resume", "POST", "student", 403),
    ("/v1/orgs/{org_id}/subscription/resume", "POST", "non_member", 403),
]


def _case_id(case: tuple) -> str:
    endpoint, method, role, expected = case
    role_label = role or "anon"
    return f"{method} {endpoint} [{role_label}] -> {expected}"


@pytest.mark.parametrize(
    "endpoint_tpl,method,role_key,expected",
    _ORG_RBAC_CASES,
    ids=[_case_id(c) for c in _ORG_RBAC_CASES],
)
def test_org_rbac(
    client: TestClient,
    endpoint_tpl: str,
    method: str,
    role_key: str | None,
    expected: int,
) -> None:
    org_id, tokens = _setup_org_with_roles()
    endpoint = endpoint_tpl.format(org_id=org_id)
    headers = auth(tokens[role_key]) if role_key else {}

    if method == "GET":
        resp = client.get(endpoint, headers=headers)
    else:
        resp = client.post(endpoint, headers=headers)

    assert resp.status_code == expected, (
        f"{method} {endpoint_tpl} role={role_key}: expected {expected}, got {resp.status_code}"
    )


def test_membership_in_one_org_does_not_open_another(client: TestClient) -> None:
    _, tokens = _setup_org_with_roles()
    other_org, _ = _setup_org_with_roles()

    resp = client.get(f"/v1/orgs/{other_org}/payments", headers=auth(tokens["owner"]))
    assert resp.status_code == 403


def test_removed_member_loses_access(client: TestClient) -> None:
    org_id = uuid4()
    add_subscription(org_id)
    user_id = uuid4()
    add_member(org_id, user_id, "teacher")
    token = mint_token(user_id)
    assert client.get(f"/v1/orgs/{org_id}/subscription", headers=auth(token)).status_code == 200

    asyncio.run(membership_repo.remove(org_id, user_id))
    assert client.get(f"/v1/orgs/{org_id}/subscription", headers=auth(token)).status_code == 403
