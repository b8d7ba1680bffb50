from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

ORG_ROLES = ("owner", "teacher", "student")

# Lower number wins when a user belongs to several orgs.  Role names are
# never compared as strings: "owner" < "student" < "teacher" alphabetically,
# which is not the business order.
ROLE_PRIORITY: dict[str, int] = {"owner": 1, "teacher": 2, "student": 3}
UNKNOWN_ROLE_PRIORITY = 99


def role_priority(org_role: str) -> int:
    return ROLE_PRIORITY.get(org_role, UNKNOWN_ROLE_PRIORITY)


@dataclass(frozen=True, slots=True)
class OrgMembership:
    org_id: UUID
    user_id: UUID
    org_role: str  # owner|teacher|student
    created_at: datetime
    status: str = "active"  # active|pending
    deleted_at: datetime | None = None

    @staticmethod
    def new(
        *,
        org_id: UUID,
        user_id: UUID,
        org_role: str,
        status: str = "active",
        created_at: datetime | None = None,
    ) -> OrgMembership:
        if org_role not in ORG_ROLES:
            raise ValueError(f"invalid org_role {org_role!r}")
        return OrgMembership(
            org_id=org_id,
            user_id=user_id,
            org_role=org_role,
            created_at=created_at or datetime.now(UTC),
            status=status,
        )

    @property
    def is_current(self) -> bool:
        """Accepted and not soft-deleted."""
        return self.status == "active" and self.deleted_at is None
