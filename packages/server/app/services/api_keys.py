"""
API key lifecycle: issue, list, revoke.

The plaintext secret is returned once at creation; only its keyed hash is
stored. Revocation deactivates the row so audit history keeps its reference.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.auth import OrgAccess, generate_api_key, hash_api_key
from app.core.config import get_settings
from app.core.errors import NotFoundError, ValidationFailedError
from app.core.guard import effective_permissions
from app.models.api_key import ApiKey
from app.models.base import ensure_utc, utcnow
from app.services import audit
from app.services.audit import RequestContext
from keystone_shared.schemas.api_keys import ApiKeyCreateRequest

log = structlog.get_logger()
settings = get_settings()

DISPLAY_PREFIX_LENGTH = 12


def to_response(api_key: ApiKey) -> dict:
    return {
        "id": api_key.id,
        "organization_id": api_key.organization_id,
        "user_id": api_key.user_id,
        "name": api_key.name,
        "prefix": api_key.prefix,
        "permissions": api_key.permissions,
        "rate_limit": api_key.rate_limit,
        "rate_limit_window": api_key.rate_limit_window,
        "is_active": api_key.is_active,
        "expires_at": ensure_utc(api_key.expires_at),
        "last_used_at": ensure_utc(api_key.last_used_at),
        "created_at": ensure_utc(api_key.created_at),
    }


async def list_keys(organization_id: uuid.UUID, session: AsyncSession) -> list[ApiKey]:
    result = await session.execute(
        select(ApiKey)
        .where(ApiKey.organization_id == organization_id)
        .order_by(ApiKey.created_at.desc())
    )
    return list(result.scalars().all())


async def create_key(
    access: OrgAccess,
    req: ApiKeyCreateRequest,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> tuple[ApiKey, str]:
    """Issue a key for the caller. Returns (row, plaintext secret)."""
    # Keys created with a key may not exceed the creating key's own grant.
    restrict_to = access.auth.api_key.permissions if access.auth.is_api_key else None
    allowed = effective_permissions(access.role, restrict_to)
    requested = set(req.permissions)
    excess = requested - allowed
    if excess:
        raise ValidationFailedError(
            "Permissions exceed your role: " + ", ".join(sorted(p.value for p in excess))
        )

    expires_at = ensure_utc(req.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise ValidationFailedError("expires_at must be in the future")

    secret = generate_api_key()
    api_key = ApiKey(
        organization_id=access.org_id,
        user_id=access.user_id,
        name=req.name,
        key_hash=hash_api_key(secret),
        prefix=secret[:DISPLAY_PREFIX_LENGTH],
        permissions=sorted(p.value for p in requested),
        rate_limit=req.rate_limit or settings.api_key_default_rate_limit,
        rate_limit_window=req.rate_limit_window or settings.api_key_default_rate_limit_window,
        expires_at=expires_at,
    )
    session.add(api_key)
    await session.flush()

    await audit.record(
        session,
        access.org_id,
        access.user_id,
        "api_key.created",
        "api_key",
        api_key.id,
        {"name": api_key.name, "permissions": api_key.permissions},
        context,
    )
    log.info("api_key.created", api_key_id=str(api_key.id), org_id=str(access.org_id))
    return api_key, secret


async def revoke_key(
    access: OrgAccess,
    api_key_id: uuid.UUID,
    session: AsyncSession,
    context: RequestContext = audit.SYSTEM,
) -> ApiKey:
    result = await session.execute(
        select(ApiKey).where(ApiKey.id == api_key_id, ApiKey.organization_id == access.org_id)
    )
    api_key = result.scalar_one_or_none()
    if api_key is None:
        raise NotFoundError("API key not found")
    if not api_key.is_active:
        return api_key

    api_key.is_active = False
    api_key.updated_at = utcnow()
    session.add(api_key)
    await session.flush()

    await audit.record(
        session,
        access.org_id,
        access.user_id,
        "api_key.revoked",
        "api_key",
        api_key.id,
        {"name": api_key.name},
        context,
    )
    log.info("api_key.revoked", api_key_id=str(api_key.id), org_id=str(access.org_id))
    return api_key
