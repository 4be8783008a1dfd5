"""
Identity sync bridge.

Reconciles identity-provider webhook events into local identities,
organizations and memberships. Every handler is an idempotent upsert or
delete keyed on a business key: the external id for identities, the slug
(falling back to the name) for organizations, since the provider's org id is
not stored.

Each event runs in its own savepoint. A failing handler is logged and rolled
back without affecting other deliveries.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.api_key import ApiKey
from app.models.audit_log import AuditLog
from app.models.base import utcnow
from app.models.invitation import Invitation
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from app.models.user import User
from app.services import memberships
from app.services.organizations import (
    delete_org_cascade,
    find_org_by_slug_or_name,
    slugify,
)
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.identity_events import (
    DeletedObject,
    IdentityEvent,
    IdentityEventType,
    ProviderMembership,
    ProviderOrganization,
    ProviderUser,
)
from keystone_shared.schemas.organizations import OrgSettings

log = structlog.get_logger()

PROVIDER_ROLES = {
    "org:admin": Role.ADMIN,
    "admin": Role.ADMIN,
    "org:member": Role.MEMBER,
    "member": Role.MEMBER,
    "org:viewer": Role.VIEWER,
    "viewer": Role.VIEWER,
}


def map_provider_role(provider_role: Optional[str]) -> Role:
    """Provider role vocabulary -> internal Role. Unknown roles become MEMBER."""
    role = PROVIDER_ROLES.get((provider_role or "").lower())
    if role is None:
        log.info("identity_sync.unknown_role", provider_role=provider_role)
        return Role.MEMBER
    return role


async def get_user_by_external_id(session: AsyncSession, external_id: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.external_id == external_id))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------

async def upsert_identity(session: AsyncSession, data: ProviderUser) -> User:
    """Create or update the identity for data.id, then claim open invitations."""
    user = await get_user_by_external_id(session, data.id)
    fields = {
        "email": data.primary_email,
        "first_name": data.first_name,
        "last_name": data.last_name,
        "image_url": data.image_url,
    }
    if user is None:
        user = User(external_id=data.id, **fields)
        log.info("identity_sync.user_created", external_id=data.id)
    else:
        changed = {k: v for k, v in fields.items() if getattr(user, k) != v}
        if not changed:
            await _claim_invitations(session, user)
            return user
        for key, value in changed.items():
            setattr(user, key, value)
        user.updated_at = utcnow()
        log.info("identity_sync.user_updated", external_id=data.id, fields=sorted(changed))
    session.add(user)
    await session.flush()
    await _claim_invitations(session, user)
    return user


async def _claim_invitations(session: AsyncSession, user: User) -> None:
    """Turn open invitations for the user's email into pending memberships."""
    if not user.email:
        return
    result = await session.execute(
        select(Invitation).where(Invitation.email == user.email.lower())
    )
    for invitation in result.scalars().all():
        existing = await memberships.get_for(session, user.id, invitation.organization_id)
        if existing is None:
            await memberships.create(
                session,
                user.id,
                invitation.organization_id,
                invitation.role,
                joined=False,
                invited_at=invitation.invited_at,
            )
        await session.delete(invitation)
        log.info(
            "identity_sync.invitation_claimed",
            invitation_id=str(invitation.id),
            org_id=str(invitation.organization_id),
        )
    await session.flush()


async def delete_identity(session: AsyncSession, external_id: Optional[str]) -> bool:
    """Hard-delete an identity and its memberships. Audit rows keep a NULL actor."""
    if not external_id:
        return False
    user = await get_user_by_external_id(session, external_id)
    if user is None:
        return False

    result = await session.execute(
        select(OrganizationMember.organization_id).where(
            OrganizationMember.user_id == user.id,
            OrganizationMember.role == Role.OWNER.value,
        )
    )
    owned_org_ids = list(result.scalars().all())

    await session.execute(sa.delete(OrganizationMember).where(OrganizationMember.user_id == user.id))
    await session.execute(sa.delete(ApiKey).where(ApiKey.user_id == user.id))
    await session.execute(
        sa.update(AuditLog).where(AuditLog.actor_id == user.id).values(actor_id=None)
    )
    await session.execute(
        sa.update(Invitation).where(Invitation.invited_by == user.id).values(invited_by=None)
    )
    await session.delete(user)
    await session.flush()

    for org_id in owned_org_ids:
        if await memberships.count_owners(session, org_id) == 0:
            log.warning("identity_sync.org_without_owner", org_id=str(org_id))
    log.info("identity_sync.user_deleted", external_id=external_id)
    return True


# ---------------------------------------------------------------------------
# Organizations
# ---------------------------------------------------------------------------

async def upsert_organization(session: AsyncSession, data: ProviderOrganization) -> Optional[Organization]:
    slug = data.slug or (slugify(data.name) if data.name else None)
    if not slug:
        log.warning("identity_sync.event_dropped", reason="organization without slug or name")
        return None

    org = await find_org_by_slug_or_name(session, data.slug, data.name)
    if org is None:
        org = Organization(
            name=data.name or slug,
            slug=slug,
            image_url=data.image_url,
            settings=OrgSettings().model_dump(),
        )
        log.info("identity_sync.org_created", slug=slug)
    else:
        if (org.name, org.image_url) == (data.name or org.name, data.image_url):
            return org
        org.name = data.name or org.name
        org.image_url = data.image_url
        org.updated_at = utcnow()
        log.info("identity_sync.org_updated", slug=org.slug)
    session.add(org)
    await session.flush()
    return org


async def delete_organization(session: AsyncSession, data: DeletedObject) -> bool:
    org = await find_org_by_slug_or_name(session, data.slug, data.name)
    if org is None:
        log.info("identity_sync.org_already_deleted", slug=data.slug, name=data.name)
        return False
    await delete_org_cascade(org, session)
    return True


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------

async def _resolve_membership_sides(
    session: AsyncSession, data: ProviderMembership
) -> Optional[tuple[User, Organization]]:
    user = await get_user_by_external_id(session, data.public_user_data.user_id)
    org = await find_org_by_slug_or_name(session, data.organization.slug, data.organization.name)
    if user is None or org is None:
        log.warning(
            "identity_sync.event_dropped",
            reason="unknown user or organization",
            user_found=user is not None,
            org_found=org is not None,
            external_user_id=data.public_user_data.user_id,
            org_slug=data.organization.slug,
        )
        return None
    return user, org


async def upsert_membership(session: AsyncSession, data: ProviderMembership) -> Optional[OrganizationMember]:
    sides = await _resolve_membership_sides(session, data)
    if sides is None:
        return None
    user, org = sides
    role = map_provider_role(data.role)

    existing = await memberships.get_for(session, user.id, org.id)
    if existing is None:
        # An org first seen through sync has no owner; its first admin becomes one.
        if role == Role.ADMIN and await memberships.count_owners(session, org.id) == 0:
            role = Role.OWNER
        return await memberships.create(session, user.id, org.id, role)

    changed = False
    if existing.joined_at is None:
        existing.joined_at = utcnow()
        changed = True
    if existing.role == Role.OWNER.value:
        if role != Role.OWNER:
            log.info("identity_sync.owner_role_kept", membership_id=str(existing.id))
    elif existing.role != role.value:
        log.info(
            "identity_sync.role_changed",
            membership_id=str(existing.id),
            old_role=existing.role,
            new_role=role.value,
        )
        existing.role = role.value
        changed = True
    if changed:
        existing.updated_at = utcnow()
        session.add(existing)
        await session.flush()
    return existing


async def delete_membership(session: AsyncSession, data: ProviderMembership) -> bool:
    sides = await _resolve_membership_sides(session, data)
    if sides is None:
        return False
    user, org = sides
    existing = await memberships.get_for(session, user.id, org.id)
    if existing is None:
        return False
    if existing.role == Role.OWNER.value and await memberships.count_owners(session, org.id) <= 1:
        log.warning("identity_sync.last_owner_kept", membership_id=str(existing.id), org_id=str(org.id))
        return False
    await session.delete(existing)
    await session.flush()
    log.info("identity_sync.membership_deleted", membership_id=str(existing.id), org_id=str(org.id))
    return True


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

async def _on_user_upsert(session: AsyncSession, data: dict) -> None:
    await upsert_identity(session, ProviderUser.model_validate(data))


async def _on_user_deleted(session: AsyncSession, data: dict) -> None:
    await delete_identity(session, DeletedObject.model_validate(data).id)


async def _on_org_upsert(session: AsyncSession, data: dict) -> None:
    await upsert_organization(session, ProviderOrganization.model_validate(data))


async def _on_org_deleted(session: AsyncSession, data: dict) -> None:
    await delete_organization(session, DeletedObject.model_validate(data))


async def _on_membership_upsert(session: AsyncSession, data: dict) -> None:
    await upsert_membership(session, ProviderMembership.model_validate(data))


async def _on_membership_deleted(session: AsyncSession, data: dict) -> None:
    await delete_membership(session, ProviderMembership.model_validate(data))


HANDLERS: dict[str, Callable[[AsyncSession, dict], Awaitable[None]]] = {
    IdentityEventType.USER_CREATED.value: _on_user_upsert,
    IdentityEventType.USER_UPDATED.value: _on_user_upsert,
    IdentityEventType.USER_DELETED.value: _on_user_deleted,
    IdentityEventType.ORGANIZATION_CREATED.value: _on_org_upsert,
    IdentityEventType.ORGANIZATION_UPDATED.value: _on_org_upsert,
    IdentityEventType.ORGANIZATION_DELETED.value: _on_org_deleted,
    IdentityEventType.MEMBERSHIP_CREATED.value: _on_membership_upsert,
    IdentityEventType.MEMBERSHIP_UPDATED.value: _on_membership_upsert,
    IdentityEventType.MEMBERSHIP_DELETED.value: _on_membership_deleted,
}


async def handle_event(session: AsyncSession, event: IdentityEvent) -> bool:
    """Apply one event. Returns False if it was unhandled or its handler failed."""
    handler = HANDLERS.get(event.type)
    if handler is None:
        log.info("identity_sync.unhandled_event", type=event.type)
        return False
    try:
        async with session.begin_nested():
            await handler(session, event.data)
    except Exception:
        log.exception("identity_sync.handler_failed", type=event.type)
        return False
    return True
