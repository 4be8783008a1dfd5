"""
Organization service - business logic for org CRUD and lifecycle.
"""

from __future__ import annotations

import re
import uuid
from typing import Optional

import sqlalchemy as sa
import structlog
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import ConflictError, InvalidOperationError, ValidationFailedError
from app.core.identity_provider import IdentityProviderClient, mirror
from app.models.api_key import ApiKey
from app.models.audit_log import AuditLog
from app.models.base import utcnow
from app.models.invitation import Invitation
from app.models.membership import OrganizationMember
from app.models.monitor import Monitor
from app.models.organization import Organization
from app.models.subscription import Subscription
from app.models.user import User
from app.services import audit, memberships
from app.services.audit import RequestContext
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.organizations import (
    OrgCreateRequest,
    OrgSettings,
    OrgUpdateRequest,
)

log = structlog.get_logger()

ACTIVE_SUBSCRIPTION_STATUSES = ("ACTIVE",)


def _deep_merge(base: dict, patch: dict) -> dict:
    """JSON Merge Patch style deep merge."""
    result = base.copy()
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def slugify(name: str) -> str:
    """Fallback slug for provider organizations that arrive without one."""
    return re.sub(r"\s+", "-", name.strip().lower())


async def get_org_by_slug(slug: str, session: AsyncSession) -> Optional[Organization]:
    result = await session.execute(select(Organization).where(Organization.slug == slug))
    return result.scalar_one_or_none()


async def find_org_by_slug_or_name(
    session: AsyncSession, slug: Optional[str], name: Optional[str]
) -> Optional[Organization]:
    """Provider-side org lookup (the provider id is not stored).

    A slug, when present, is authoritative. Names are not unique, so the name is
    only consulted for slugless payloads, and an ambiguous name matches nothing.
    """
    if slug:
        return await get_org_by_slug(slug, session)
    if not name:
        return None
    org = await get_org_by_slug(slugify(name), session)
    if org:
        return org
    result = await session.execute(select(Organization).where(Organization.name == name).limit(2))
    matches = list(result.scalars().all())
    if len(matches) > 1:
        log.warning("org.lookup_ambiguous_name", name=name)
        return None
    return matches[0] if matches else None


async def create_org(
    req: OrgCreateRequest,
    creator: User,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> tuple[Organization, OrganizationMember]:
    """Create an org and make the creator its (joined) OWNER."""
    if await get_org_by_slug(req.slug, session):
        raise ConflictError("Organization slug is already taken")

    # A provider failure aborts creation before any local row exists.
    provider_org = await provider.create_organization(req.name, req.slug, creator.external_id)

    org = Organization(
        name=req.name,
        slug=req.slug,
        description=req.description,
        settings=OrgSettings().model_dump(),
    )
    try:
        async with session.begin_nested():
            session.add(org)
            await session.flush()
    except IntegrityError:
        # Lost a slug race after the provider org was created; undo it there.
        await mirror("organization.delete", provider.delete_organization(req.slug), slug=req.slug)
        raise ConflictError("Organization slug is already taken")

    membership = await memberships.create(session, creator.id, org.id, Role.OWNER)

    metadata = {"organization_name": req.name, "slug": req.slug}
    if provider_org and provider_org.get("id"):
        metadata["provider_org_id"] = provider_org["id"]
    await audit.record(
        session,
        org.id,
        creator.id,
        "organization.created",
        "organization",
        org.id,
        metadata,
        context,
    )

    log.info("org.created", org_id=str(org.id), slug=req.slug, creator=str(creator.id))
    return org, membership


async def org_counts(org_id: uuid.UUID, session: AsyncSession) -> dict[str, int]:
    counts = {}
    for key, model in (
        ("members", OrganizationMember),
        ("api_keys", ApiKey),
        ("monitors", Monitor),
        ("subscriptions", Subscription),
        ("audit_logs", AuditLog),
    ):
        result = await session.execute(
            select(sa.func.count()).select_from(model).where(model.organization_id == org_id)
        )
        counts[key] = result.scalar_one()
    return counts


async def update_org(
    org: Organization,
    req: OrgUpdateRequest,
    actor_id: uuid.UUID,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> Organization:
    """Update name, description and/or image. The slug never changes."""
    changes = req.model_dump(exclude_unset=True, mode="json")
    if "name" in changes and changes["name"] is None:
        raise ValidationFailedError("Organization name cannot be empty")

    for field, value in changes.items():
        setattr(org, field, value)
    org.updated_at = utcnow()
    session.add(org)
    await session.flush()

    if "name" in changes:
        await mirror(
            "organization.update",
            provider.update_organization(org.slug, org.name),
            org_id=str(org.id),
        )

    await audit.record(
        session, org.id, actor_id, "organization.updated", "organization", org.id, changes, context
    )
    log.info("org.updated", org_id=str(org.id), slug=org.slug, fields=sorted(changes))
    return org


async def update_settings(
    org: Organization,
    settings: dict,
    merge: bool,
    actor_id: uuid.UUID,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> Organization:
    """Replace or deep-merge the settings bag; the result must validate as OrgSettings."""
    new_settings = _deep_merge(org.settings or {}, settings) if merge else settings
    try:
        validated = OrgSettings.model_validate(new_settings)
    except ValidationError as exc:
        raise ValidationFailedError(f"Invalid settings: {exc.errors()[0]['msg']}")

    org.settings = validated.model_dump()
    org.updated_at = utcnow()
    session.add(org)
    await session.flush()

    await audit.record(
        session,
        org.id,
        actor_id,
        "organization.settings_updated",
        "organization",
        org.id,
        {"settings": settings, "merge": merge},
        context,
    )
    log.info("org.settings_updated", org_id=str(org.id), merge=merge)
    return org


async def delete_org(
    org: Organization,
    actor_id: uuid.UUID,
    session: AsyncSession,
    provider: IdentityProviderClient,
    context: RequestContext = audit.SYSTEM,
) -> None:
    """Delete an org that has no active subscription."""
    result = await session.execute(
        select(sa.func.count())
        .select_from(Subscription)
        .where(
            Subscription.organization_id == org.id,
            Subscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES),
        )
    )
    if result.scalar_one() > 0:
        raise InvalidOperationError(
            "Cannot delete organization with active subscriptions. "
            "Please cancel all subscriptions first."
        )

    await mirror("organization.delete", provider.delete_organization(org.slug), org_id=str(org.id))

    await audit.record(
        session,
        org.id,
        actor_id,
        "organization.deleted",
        "organization",
        org.id,
        {"organization_name": org.name, "deleted_at": utcnow().isoformat()},
        context,
    )
    await delete_org_cascade(org, session)


async def delete_org_cascade(org: Organization, session: AsyncSession) -> None:
    """Remove an org and every row that belongs to it."""
    org_id = org.id
    for model in (OrganizationMember, Invitation, ApiKey, Monitor, Subscription, AuditLog):
        await session.execute(
            sa.delete(model)
            .where(model.organization_id == org_id)
            .execution_options(synchronize_session=False)
        )
    await session.delete(org)
    await session.flush()
    log.info("org.deleted", org_id=str(org_id), slug=org.slug)
