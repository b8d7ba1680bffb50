from __future__ import annotations

import logging
from uuid import UUID

from app.models.organization import OrgMembership, role_priority
from app.repos.org_membership_repo import OrgMembershipRepo

logger = logging.getLogger(__name__)


def _governing_sort_key(m: OrgMembership) -> tuple[int, object, str]:
    # Explicit priority table first; earliest membership breaks ties, org id
    # keeps the result deterministic when timestamps collide.
    return (role_priority(m.org_role), m.created_at, str(m.org_id))


def pick_governing_membership(
    memberships: list[OrgMembership],
) -> OrgMembership | None:
    """Choose the membership whose org governs entitlements.

    Only accepted, non-deleted memberships count: a pending invite as an
    owner must not override an accepted teacher seat.
    """
    current = [m for m in memberships if m.is_current]
    if not current:
        return None
    return min(current, key=_governing_sort_key)


async def resolve_governing_org(repo: OrgMembershipRepo, user_id: UUID) -> UUID | None:
    """Org whose subscription governs ``user_id``, or None (free tier)."""
    best = pick_governing_membership(await repo.list_by_user(user_id))
    if best is None:
        logger.debug("No governing org for user=%s", user_id)
        return None
    logger.debug(
        "Governing org for user=%s is org=%s as %s",
        user_id,
        best.org_id,
        best.org_role,
    )
    return best.org_id
