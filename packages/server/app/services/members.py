"""
Team management: invitations, role changes and removals.

Each action is authorized by the route dependency; here the rank rule is
applied against the target, the store is mutated, the change is mirrored to
the identity provider (best-effort) and an audit entry is written.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ConflictError, NotFoundError
from app.core.guard import ensure_can_assign, ensure_can_manage
from app.core.identity_provider import IdentityProviderClient, mirror
from app.models.base import ensure_utc, utcnow
from app.models.invitation import Invitation
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from app.models.user import User
from app.services import audit, memberships
from app.services.audit import RequestContext
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.members import MemberInviteRequest

log = structlog.get_logger()


def member_to_response(membership: OrganizationMember, user: User) -> dict:
    return {
        "id": membership.id,
        "user_id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "image_url": user.image_url,
        "role": membership.role,
        "invited_at": ensure_utc(membership.invited_at),
        "joined_at": ensure_utc(membership.joined_at),
        "created_at": ensure_utc(membership.created_at),
    }


def invitation_to_response(invitation: Invitation) -> dict:
    return {
        "id": invitation.id,
        "email": invitation.email,
        "role": invitation.role,
        "invited_by": invitation.invited_by,
        "invited_at": ensure_utc(invitation.invited_at),
    }


async def find_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalars().first()


async def _get_target(
    session: AsyncSession, org: Organization, membership_id: uuid.UUID
) -> tuple[OrganizationMember, User]:
    result = await session.execute(
        select(OrganizationMember, User)
        .join(User, User.id == OrganizationMember.user_id)
        .where(
            OrganizationMember.id == membership_id,
            OrganizationMember.organization_id == org.id,
        )
    )
    row = result.first()
    if row is None:
        raise NotFoundError("Member not found")
    return row[0], row[1]


async def list_open_invitations(session: AsyncSession, organization_id: uuid.UUID) -> list[Invitation]:
    result = await session.execute(
        select(Invitation)
        .where(Invitation.organization_id == organization_id)
        .order_by(Invitation.invited_at)
    )
    return list(result.scalars().all())


async def invite_member(
    org: Organization,
    actor: OrganizationMember,
    req: MemberInviteRequest,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> dict:
    """Invite by email.

    Known identities get a pending membership. Unknown emails get an
    Invitation row that is converted once the identity signs up.
    """
    ensure_can_assign(actor.role, req.role)
    email = req.email.lower()

    target = await find_user_by_email(session, email)
    if target is not None:
        membership = await memberships.create(
            session, target.id, org.id, req.role, joined=False, invited_at=utcnow()
        )
        await mirror(
            "membership.create",
            provider.create_membership(org.slug, target.external_id, req.role),
            org_id=str(org.id),
        )
        await audit.record(
            session,
            org.id,
            actor.user_id,
            "organization.member_invited",
            "organization_member",
            membership.id,
            {"invited_email": email, "role": req.role.value},
            context,
        )
        return {
            "member": member_to_response(membership, target),
            "invitation": None,
            "message": "Invitation sent.",
        }

    result = await session.execute(
        select(Invitation).where(Invitation.organization_id == org.id, Invitation.email == email)
    )
    if result.scalar_one_or_none():
        raise ConflictError("An invitation is already pending for this email")

    invitation = Invitation(
        organization_id=org.id,
        email=email,
        role=req.role.value,
        invited_by=actor.user_id,
    )
    session.add(invitation)
    await session.flush()

    # Attributed to the inviter; the invitee has no identity yet.
    await audit.record(
        session,
        org.id,
        actor.user_id,
        "organization.member_invited",
        "invitation",
        invitation.id,
        {"invited_email": email, "role": req.role.value, "pending_identity": True},
        context,
    )
    log.info("invitation.created", org_id=str(org.id), invitation_id=str(invitation.id))
    return {
        "member": None,
        "invitation": invitation_to_response(invitation),
        "message": "Invitation sent. User will be added when they sign up.",
    }


async def change_member_role(
    org: Organization,
    actor: OrganizationMember,
    membership_id: uuid.UUID,
    new_role: Role,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> dict:
    target, user = await _get_target(session, org, membership_id)
    ensure_can_manage(actor.role, target.role)
    ensure_can_assign(actor.role, new_role)

    old_role = target.role
    updated = await memberships.set_role(session, target.id, new_role)

    await mirror(
        "membership.update",
        provider.update_membership(org.slug, user.external_id, new_role),
        org_id=str(org.id),
    )
    await audit.record(
        session,
        org.id,
        actor.user_id,
        "organization.member_role_updated",
        "organization_member",
        target.id,
        {"member_email": user.email, "old_role": old_role, "new_role": new_role.value},
        context,
    )
    return member_to_response(updated, user)


async def remove_member(
    org: Organization,
    actor: OrganizationMember,
    membership_id: uuid.UUID,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> None:
    target, user = await _get_target(session, org, membership_id)
    ensure_can_manage(actor.role, target.role)

    removed = await memberships.remove(session, target.id)

    await mirror(
        "membership.delete",
        provider.delete_membership(org.slug, user.external_id),
        org_id=str(org.id),
    )
    await audit.record(
        session,
        org.id,
        actor.user_id,
        "organization.member_removed",
        "organization_member",
        removed.id,
        {
            "removed_member_email": user.email,
            "removed_member_role": removed.role,
            "removed_at": utcnow().isoformat(),
        },
        context,
    )


async def accept_invitation(
    org: Organization,
    user: User,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> dict:
    membership = await memberships.accept(session, user.id, org.id)
    await audit.record(
        session,
        org.id,
        user.id,
        "organization.member_joined",
        "organization_member",
        membership.id,
        {"role": membership.role},
        context,
    )
    return member_to_response(membership, user)
