from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Platform-level fields (always set):
        user_id: subject from JWT
        roles: platform roles (admin, user)

    Org-level fields (set by resolve_org_principal for org-scoped routes):
        org_id: organization named in the URL
        org_role: role within that org (owner|teacher|student)

    Billing operations never read an ambient "current org"; org-scoped
    routes name the org explicitly and the entitlement resolver derives
    the governing org from the user id.
    """

    user_id: str
    roles: frozenset[str]
    org_id: UUID | None = None
    org_role: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_org_role(self, role: str) -> bool:
        return self.org_role == role

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles
