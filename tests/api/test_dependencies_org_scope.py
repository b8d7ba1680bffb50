from __future__ import annotations

import asyncio
from uuid import uuid4

import pytest
from fastapi import HTTPException, status

from app.api.dependencies import resolve_org_principal
from app.models.organization import OrgMembership
from app.models.principal import Principal
from app.repos.org_membership_repo import InMemoryOrgMembershipRepo


def _principal(user_id: str, *roles: str) -> Principal:
    return Principal(user_id=user_id, roles=frozenset(roles or ("user",)))


def test_resolve_org_principal_rejects_non_member() -> None:
    resolve = resolve_org_principal(InMemoryOrgMembershipRepo())

    with pytest.raises(HTTPException) as exc:
        asyncio.run(resolve(org_id=uuid4(), principal=_principal(str(uuid4()))))

    assert exc.value.status_code == status.HTTP_403_FORBIDDEN


def test_resolve_org_principal_returns_org_context_for_member() -> None:
    repo = InMemoryOrgMembershipRepo()
    resolve = resolve_org_principal(repo)
    org_id = uuid4()
    user_id = uuid4()
    asyncio.run(repo.add(OrgMembership.new(org_id=org_id, user_id=user_id, org_role="teacher")))

    principal = asyncio.run(resolve(org_id=org_id, principal=_principal(str(user_id))))

    assert principal.org_id == org_id
    assert principal.org_role == "teacher"


def test_resolve_org_principal_rejects_pending_membership() -> None:
    repo = InMemoryOrgMembershipRepo()
    resolve = resolve_org_principal(repo)
    org_id = uuid4()
    user_id = uuid4()
    asyncio.run(
        repo.add(
            OrgMembership.new(org_id=org_id, user_id=user_id, org_role="owner", status="pending")
        )
    )

    with pytest.raises(HTTPException) as exc:
        asyncio.run(resolve(org_id=org_id, principal=_principal(str(user_id))))

    assert exc.value.status_code == status.HTTP_403_FORBIDDEN


def test_resolve_org_principal_allows_platform_admin_without_membership() -> None:
    resolve = resolve_org_principal(InMemoryOrgMembershipRepo())
    org_id = uuid4()

    principal = asyncio.run(resolve(org_id=org_id, principal=_principal(str(uuid4()), "admin")))

    assert principal.org_id == org_id
    assert principal.org_role == "admin"
