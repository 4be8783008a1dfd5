"""
Authorization guard.

Answers "does identity X hold permission P in organization O" from the current
membership row and the static role-permission table. Nothing is cached: every
call reads the membership as it is now.

Failure mapping:
- no identity                         -> UnauthorizedError
- unknown org, no or pending member   -> NotFoundError("Organization not found")
- member without the permission/role  -> ForbiddenError
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ForbiddenError, InvalidOperationError, NotFoundError, UnauthorizedError
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from keystone_shared.schemas.common import Role, role_rank
from keystone_shared.schemas.permissions import Permission, permissions_for

log = structlog.get_logger()

ORG_NOT_FOUND = "Organization not found"


async def _active_membership(
    session: AsyncSession, identity_id: uuid.UUID, organization_id: uuid.UUID
) -> Optional[tuple[OrganizationMember, Organization]]:
    result = await session.execute(
        select(OrganizationMember, Organization)
        .join(Organization, Organization.id == OrganizationMember.organization_id)
        .where(
            OrganizationMember.user_id == identity_id,
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.joined_at.is_not(None),
        )
    )
    row = result.first()
    return (row[0], row[1]) if row else None


def effective_permissions(
    role: Role | str, restrict_to: Optional[Iterable[Permission | str]] = None
) -> frozenset[Permission]:
    """Role permissions, optionally narrowed (API keys carry a subset)."""
    granted = permissions_for(role)
    if restrict_to is None:
        return granted
    return granted & frozenset(Permission(p) for p in restrict_to)


async def has_permission(
    session: AsyncSession,
    identity_id: Optional[uuid.UUID],
    organization_id: Optional[uuid.UUID],
    permission: Permission | str,
) -> bool:
    """True if the identity's current membership grants the permission. Never raises."""
    if identity_id is None or organization_id is None:
        return False
    try:
        found = await _active_membership(session, identity_id, organization_id)
    except SQLAlchemyError:
        log.exception("guard.lookup_failed", org_id=str(organization_id))
        return False
    if found is None:
        return False
    membership, _ = found
    try:
        return Permission(permission) in permissions_for(membership.role)
    except ValueError:
        return False


async def require_permission(
    session: AsyncSession,
    identity_id: Optional[uuid.UUID],
    organization_id: uuid.UUID,
    permission: Permission | str,
    *,
    restrict_to: Optional[Iterable[Permission | str]] = None,
) -> tuple[OrganizationMember, Organization]:
    """Like has_permission, but raises and returns the resolved membership and org."""
    if identity_id is None:
        raise UnauthorizedError()
    found = await _active_membership(session, identity_id, organization_id)
    if found is None:
        raise NotFoundError(ORG_NOT_FOUND)
    membership, org = found
    if Permission(permission) not in effective_permissions(membership.role, restrict_to):
        log.info(
            "guard.permission_denied",
            org_id=str(organization_id),
            user_id=str(identity_id),
            permission=Permission(permission).value,
        )
        raise ForbiddenError()
    return membership, org


async def require_role(
    session: AsyncSession,
    identity_id: Optional[uuid.UUID],
    organization_id: uuid.UUID,
    allowed_roles: Iterable[Role | str],
) -> tuple[OrganizationMember, Organization]:
    """Role-based variant, for actions such as "only OWNER may delete the organization"."""
    if identity_id is None:
        raise UnauthorizedError()
    found = await _active_membership(session, identity_id, organization_id)
    if found is None:
        raise NotFoundError(ORG_NOT_FOUND)
    membership, org = found
    allowed = {Role(r).value for r in allowed_roles}
    if membership.role not in allowed:
        log.info(
            "guard.role_denied",
            org_id=str(organization_id),
            user_id=str(identity_id),
            role=membership.role,
        )
        raise ForbiddenError()
    return membership, org


# ---------------------------------------------------------------------------
# Rank rule for member management
# ---------------------------------------------------------------------------

def can_manage(actor_role: Role | str, target_role: Role | str) -> bool:
    """An actor may manage only members ranked strictly below itself. OWNER never."""
    if Role(target_role) == Role.OWNER:
        return False
    return role_rank(target_role) > role_rank(actor_role)


def ensure_can_manage(actor_role: Role | str, target_role: Role | str) -> None:
    if Role(target_role) == Role.OWNER:
        raise InvalidOperationError("Cannot modify the organization owner")
    if not can_manage(actor_role, target_role):
        raise ForbiddenError("Only a higher-ranked role can manage this member")


def ensure_can_assign(actor_role: Role | str, new_role: Role | str) -> None:
    if Role(new_role) == Role.OWNER:
        raise InvalidOperationError("Ownership cannot be assigned")
    if role_rank(new_role) <= role_rank(actor_role):
        raise ForbiddenError("Cannot assign a role at or above your own")
