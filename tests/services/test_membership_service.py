from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from app.models.organization import OrgMembership
from app.repos.org_membership_repo import InMemoryOrgMembershipRepo
from app.services.membership_service import resolve_governing_org

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _repo(*memberships: OrgMembership) -> InMemoryOrgMembershipRepo:
    repo = InMemoryOrgMembershipRepo()
    for m in memberships:
        asyncio.run(repo.add(m))
    return repo


def _m(
    user_id: UUID,
    org_role: str,
    *,
    org_id: UUID | None = None,
    days: int = 0,
    status: str = "active",
) -> OrgMembership:
    return OrgMembership.new(
        org_id=org_id or uuid4(),
        user_id=user_id,
        org_role=org_role,
        status=status,
        created_at=T0 + timedelta(days=days),
    )


def test_no_memberships_returns_none() -> None:
    assert asyncio.run(resolve_governing_org(_repo(), uuid4())) is None


def test_single_membership_governs() -> None:
    user = uuid4()
    m = _m(user, "student")
    assert asyncio.run(resolve_governing_org(_repo(m), user)) == m.org_id


def test_owner_beats_older_student_membership() -> None:
    user = uuid4()
    student = _m(user, "student", days=0)
    owner = _m(user, "owner", days=30)
    assert asyncio.run(resolve_governing_org(_repo(student, owner), user)) == owner.org_id


def test_teacher_beats_student_despite_alphabetical_order() -> None:
    # "student" < "teacher" as strings; the priority table must win.
    user = uuid4()
    student = _m(user, "student", days=0)
    teacher = _m(user, "teacher", days=5)
    assert asyncio.run(resolve_governing_org(_repo(student, teacher), user)) == teacher.org_id


def test_owner_beats_teacher() -> None:
    user = uuid4()
    teacher = _m(user, "teacher", days=0)
    owner = _m(user, "owner", days=10)
    assert asyncio.run(resolve_governing_org(_repo(teacher, owner), user)) == owner.org_id


def test_same_role_earliest_membership_wins() -> None:
    user = uuid4()
    newer = _m(user, "teacher", days=20)
    older = _m(user, "teacher", days=2)
    assert asyncio.run(resolve_governing_org(_repo(newer, older), user)) == older.org_id


def test_same_role_and_time_breaks_tie_by_org_id() -> None:
    user = uuid4()
    a = _m(user, "student", org_id=UUID(int=1))
    b = _m(user, "student", org_id=UUID(int=2))
    assert asyncio.run(resolve_governing_org(_repo(b, a), user)) == a.org_id


def test_removed_membership_does_not_govern() -> None:
    user = uuid4()
    owner = _m(user, "owner")
    student = _m(user, "student", days=3)
    repo = _repo(owner, student)
    asyncio.run(repo.remove(owner.org_id, user))
    assert asyncio.run(resolve_governing_org(repo, user)) == student.org_id


def test_pending_invite_does_not_govern() -> None:
    user = uuid4()
    pending_owner = _m(user, "owner", status="pending")
    teacher = _m(user, "teacher", days=3)
    repo = _repo(pending_owner, teacher)
    assert asyncio.run(resolve_governing_org(repo, user)) == teacher.org_id


def test_only_pending_invites_means_no_org() -> None:
    user = uuid4()
    repo = _repo(_m(user, "student", status="pending"))
    assert asyncio.run(resolve_governing_org(repo, user)) is None
