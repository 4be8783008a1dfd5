"""
Membership store - persistence rules for organization memberships.

Role changes and removals are conditional statements keyed on the row's
current role, so two concurrent writers cannot both act on a stale read.
Every mutation re-checks that the organization still has an owner before the
surrounding transaction commits.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ConflictError, InvalidOperationError, NotFoundError
from app.models.base import utcnow
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from app.models.user import User
from keystone_shared.schemas.common import ROLE_ORDER, Role

log = structlog.get_logger()

_ROLE_SORT = sa.case(
    {role.value: rank for rank, role in enumerate(ROLE_ORDER)},
    value=OrganizationMember.role,
    else_=len(ROLE_ORDER),
)


async def get(session: AsyncSession, membership_id: uuid.UUID) -> Optional[OrganizationMember]:
    result = await session.execute(
        select(OrganizationMember).where(OrganizationMember.id == membership_id)
    )
    return result.scalar_one_or_none()


async def get_for(
    session: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID
) -> Optional[OrganizationMember]:
    result = await session.execute(
        select(OrganizationMember).where(
            OrganizationMember.user_id == user_id,
            OrganizationMember.organization_id == organization_id,
        )
    )
    return result.scalar_one_or_none()


async def create(
    session: AsyncSession,
    user_id: uuid.UUID,
    organization_id: uuid.UUID,
    role: Role | str,
    *,
    joined: bool = True,
    invited_at: Optional[datetime] = None,
) -> OrganizationMember:
    """Insert a membership. Raises ConflictError if the pair already exists."""
    if await get_for(session, user_id, organization_id):
        raise ConflictError("User is already a member of this organization")

    now = utcnow()
    membership = OrganizationMember(
        user_id=user_id,
        organization_id=organization_id,
        role=Role(role).value,
        invited_at=invited_at,
        joined_at=now if joined else None,
    )
    try:
        async with session.begin_nested():
            session.add(membership)
            await session.flush()
    except IntegrityError:
        raise ConflictError("User is already a member of this organization")

    log.info(
        "membership.created",
        membership_id=str(membership.id),
        org_id=str(organization_id),
        user_id=str(user_id),
        role=membership.role,
        pending=not joined,
    )
    return membership


async def set_role(
    session: AsyncSession, membership_id: uuid.UUID, role: Role | str
) -> OrganizationMember:
    """Change a membership's role. OWNER rows and ownership transfer are rejected."""
    new_role = Role(role)
    membership = await get(session, membership_id)
    if membership is None:
        raise NotFoundError("Member not found")
    current = membership.role
    if current == Role.OWNER.value:
        raise InvalidOperationError("Cannot change owner role")
    if new_role == Role.OWNER:
        raise InvalidOperationError("Ownership cannot be transferred")
    if current == new_role.value:
        return membership

    result = await session.execute(
        sa.update(OrganizationMember)
        .where(
            OrganizationMember.id == membership_id,
            OrganizationMember.role == current,
        )
        .values(role=new_role.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Membership was modified concurrently; retry")

    await ensure_owner_remains(session, membership.organization_id)
    await session.refresh(membership)
    log.info(
        "membership.role_changed",
        membership_id=str(membership_id),
        org_id=str(membership.organization_id),
        old_role=current,
        new_role=new_role.value,
    )
    return membership


async def remove(session: AsyncSession, membership_id: uuid.UUID) -> OrganizationMember:
    """Delete a membership. OWNER rows are rejected. Returns the deleted row."""
    membership = await get(session, membership_id)
    if membership is None:
        raise NotFoundError("Member not found")
    if membership.role == Role.OWNER.value:
        raise InvalidOperationError("Cannot remove organization owner")

    result = await session.execute(
        sa.delete(OrganizationMember)
        .where(
            OrganizationMember.id == membership_id,
            OrganizationMember.role != Role.OWNER.value,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Membership was modified concurrently; retry")

    await ensure_owner_remains(session, membership.organization_id)
    session.expunge(membership)
    log.info(
        "membership.removed",
        membership_id=str(membership_id),
        org_id=str(membership.organization_id),
        role=membership.role,
    )
    return membership


async def accept(
    session: AsyncSession, user_id: uuid.UUID, organization_id: uuid.UUID
) -> OrganizationMember:
    """Mark the caller's pending membership as joined."""
    membership = await get_for(session, user_id, organization_id)
    if membership is None:
        raise NotFoundError("Organization not found")
    if membership.joined_at is not None:
        raise InvalidOperationError("Membership already accepted")
    membership.joined_at = utcnow()
    membership.updated_at = utcnow()
    session.add(membership)
    await session.flush()
    log.info("membership.accepted", membership_id=str(membership.id), org_id=str(organization_id))
    return membership


async def list_by_organization(
    session: AsyncSession, organization_id: uuid.UUID
) -> list[tuple[OrganizationMember, User]]:
    """All memberships, OWNER first, then by join time (pending last)."""
    result = await session.execute(
        select(OrganizationMember, User)
        .join(User, User.id == OrganizationMember.user_id)
        .where(OrganizationMember.organization_id == organization_id)
        .order_by(
            _ROLE_SORT,
            OrganizationMember.joined_at.asc().nulls_last(),
            OrganizationMember.created_at.asc(),
        )
    )
    return list(result.all())


async def list_pending(
    session: AsyncSession, organization_id: uuid.UUID
) -> list[tuple[OrganizationMember, User]]:
    result = await session.execute(
        select(OrganizationMember, User)
        .join(User, User.id == OrganizationMember.user_id)
        .where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.joined_at.is_(None),
        )
        .order_by(OrganizationMember.invited_at.asc(), OrganizationMember.created_at.asc())
    )
    return list(result.all())


async def list_for_user(
    session: AsyncSession, user_id: uuid.UUID
) -> list[tuple[Organization, OrganizationMember]]:
    result = await session.execute(
        select(Organization, OrganizationMember)
        .join(OrganizationMember, OrganizationMember.organization_id == Organization.id)
        .where(OrganizationMember.user_id == user_id)
        .order_by(Organization.name.asc())
    )
    return list(result.all())


async def count_owners(session: AsyncSession, organization_id: uuid.UUID) -> int:
    result = await session.execute(
        select(sa.func.count())
        .select_from(OrganizationMember)
        .where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.role == Role.OWNER.value,
        )
    )
    return result.scalar_one()


async def ensure_owner_remains(session: AsyncSession, organization_id: uuid.UUID) -> None:
    """Raise InvalidOperationError if the organization would be left without an OWNER."""
    if await count_owners(session, organization_id) < 1:
        raise InvalidOperationError("An organization must keep at least one owner")
