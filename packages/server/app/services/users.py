"""
Identity views and self-service account changes.
"""

from __future__ import annotations

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidOperationError
from app.core.identity_provider import IdentityProviderClient
from app.models.api_key import ApiKey
from app.models.base import ensure_utc, utcnow
from app.models.membership import OrganizationMember
from app.models.user import User
from app.services import audit, memberships
from app.services.audit import RequestContext
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.users import ProfileUpdateRequest

log = structlog.get_logger()


def identity_to_response(user: User) -> dict:
    return {
        "id": user.id,
        "external_id": user.external_id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "image_url": user.image_url,
        "created_at": ensure_utc(user.created_at),
    }


async def list_user_orgs(user: User, session: AsyncSession) -> list[dict]:
    """All orgs the user belongs to (pending ones included, with joined_at null)."""
    rows = await memberships.list_for_user(session, user.id)
    return [
        {
            "id": org.id,
            "name": org.name,
            "slug": org.slug,
            "image_url": org.image_url,
            "role": membership.role,
            "joined_at": ensure_utc(membership.joined_at),
        }
        for org, membership in rows
    ]


async def get_me(user: User, via: str, session: AsyncSession) -> dict:
    return {
        "user": identity_to_response(user),
        "organizations": await list_user_orgs(user, session),
        "authenticated_via": via,
    }


async def update_profile(
    user: User,
    req: ProfileUpdateRequest,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> User:
    """Change the caller's name. The provider is updated first; its failure aborts."""
    await provider.update_user(user.external_id, req.first_name, req.last_name)

    user.first_name = req.first_name
    user.last_name = req.last_name
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()

    changes = {"first_name": req.first_name, "last_name": req.last_name}
    for org, _ in await memberships.list_for_user(session, user.id):
        await audit.record(
            session, org.id, user.id, "user.profile_updated", "user", user.id, changes, context
        )
    log.info("user.profile_updated", user_id=str(user.id))
    return user


async def delete_account(
    user: User,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> None:
    """Leave every org, deactivate the caller's API keys and delete the provider account.

    The local identity row goes away when the provider's user.deleted event arrives.
    Owners must hand over or delete their organizations first.
    """
    rows = await memberships.list_for_user(session, user.id)
    owned = [org.slug for org, membership in rows if membership.role == Role.OWNER.value]
    if owned:
        raise InvalidOperationError(
            "Transfer or delete the organizations you own before deleting your account: "
            + ", ".join(sorted(owned))
        )

    deleted_at = utcnow().isoformat()
    for org, _ in rows:
        await audit.record(
            session,
            org.id,
            user.id,
            "user.account_deleted",
            "user",
            user.id,
            {"email": user.email, "deleted_at": deleted_at},
            context,
        )

    await session.execute(sa.delete(OrganizationMember).where(OrganizationMember.user_id == user.id))
    await session.execute(
        sa.update(ApiKey).where(ApiKey.user_id == user.id).values(is_active=False, updated_at=utcnow())
    )
    await session.flush()

    # Last, so a provider failure rolls the local changes back.
    await provider.delete_user(user.external_id)
    log.info("user.account_deleted", user_id=str(user.id), orgs_left=len(rows))
