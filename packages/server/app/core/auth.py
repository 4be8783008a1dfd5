"""
Authentication and authorization dependencies for Keystone.

Supports:
- Human auth: session token issued by the identity provider (Bearer header
  or session cookie), verified with PyJWT
- Machine auth: organization API keys, looked up by keyed hash
- Org-scoped permission and role dependencies built on the guard
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import guard
from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import ForbiddenError, NotFoundError, UnauthorizedError
from app.core.identity_provider import IdentityProviderClient, get_identity_provider
from app.core.ratelimit import enforce_api_key_limit
from app.models.api_key import ApiKey
from app.models.base import ensure_utc, utcnow
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from app.models.user import User
from app.services import identity_sync
from app.services.organizations import get_org_by_slug
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.permissions import Permission

log = structlog.get_logger()
settings = get_settings()

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)

INVALID_API_KEY = "Invalid API key"

# ---------------------------------------------------------------------------
# API Key generation & hashing
# ---------------------------------------------------------------------------

def generate_api_key() -> str:
    """Generate a new prefixed API key secret."""
    return f"{settings.api_key_prefix}{secrets.token_urlsafe(32)}"


def hash_api_key(key: str) -> str:
    """Deterministic keyed hash (HMAC-SHA256) so keys can be looked up by hash."""
    return hmac.new(
        settings.api_key_hash_secret.encode(), key.encode(), hashlib.sha256
    ).hexdigest()


def is_api_key(token: str) -> bool:
    return token.startswith(settings.api_key_prefix)


async def authenticate_api_key(session: AsyncSession, key: str) -> ApiKey:
    """Resolve an API key secret.

    Unknown, inactive and expired keys all fail with the same error; the hash
    is always computed and exactly one lookup is made.
    """
    key_hash = hash_api_key(key)
    result = await session.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
    api_key = result.scalar_one_or_none()

    now = utcnow()
    expires_at = ensure_utc(api_key.expires_at) if api_key else None
    if api_key is None or not api_key.is_active or (expires_at is not None and expires_at <= now):
        raise UnauthorizedError(INVALID_API_KEY)

    api_key.last_used_at = now
    session.add(api_key)
    await session.flush()
    return api_key


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

def create_session_token(
    external_id: str, *, expires_delta: timedelta | None = None
) -> str:
    """Mint a session token. Production tokens come from the identity provider;
    this is used by tests and local tooling."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": external_id,
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.session_jwt_key, algorithm=settings.session_jwt_algorithm)


def decode_session_token(token: str) -> dict:
    """Decode and verify a session token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(
        token,
        settings.session_jwt_key,
        algorithms=[settings.session_jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

class AuthContext:
    """The authenticated principal for a request."""

    def __init__(self, user: User, via: str, api_key: Optional[ApiKey] = None):
        self.user = user
        self.user_id = user.id
        self.via = via  # session | api_key
        self.api_key = api_key

    @property
    def is_api_key(self) -> bool:
        return self.api_key is not None


async def _user_for_session(
    token: str, session: AsyncSession, provider: IdentityProviderClient
) -> User:
    try:
        payload = decode_session_token(token)
    except jwt.PyJWTError:
        raise UnauthorizedError("Invalid or expired session")

    external_id = payload["sub"]
    user = await identity_sync.get_user_by_external_id(session, external_id)
    if user is not None:
        return user

    # First sign-in can race the user.created webhook; fetch the profile directly.
    profile = await provider.get_user(external_id)
    if profile is None:
        raise UnauthorizedError("Unknown identity")
    user = await identity_sync.upsert_identity(session, profile)
    log.info("auth.identity_provisioned", external_id=external_id)
    return user


async def get_current_identity(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
    session: AsyncSession = Depends(get_session),
    provider: IdentityProviderClient = Depends(get_identity_provider),
) -> AuthContext:
    """Main authentication dependency. Tries API key / bearer token, then the session cookie."""
    token: Optional[str] = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()

    if token and is_api_key(token):
        api_key = await authenticate_api_key(session, token)
        await enforce_api_key_limit(str(api_key.id), api_key.rate_limit, api_key.rate_limit_window)
        result = await session.execute(select(User).where(User.id == api_key.user_id))
        user = result.scalar_one_or_none()
        if user is None:
            raise UnauthorizedError(INVALID_API_KEY)
        auth = AuthContext(user=user, via="api_key", api_key=api_key)
    else:
        token = token or request.cookies.get(settings.session_cookie_name)
        if not token:
            raise UnauthorizedError()
        user = await _user_for_session(token, session, provider)
        auth = AuthContext(user=user, via="session")

    request.state.auth = auth
    structlog.contextvars.bind_contextvars(user_id=str(auth.user_id), auth_via=auth.via)
    return auth


# ---------------------------------------------------------------------------
# Org-scoped authorization
# ---------------------------------------------------------------------------

class OrgAccess:
    """An authenticated principal resolved against one organization."""

    def __init__(self, auth: AuthContext, org: Organization, membership: OrganizationMember):
        self.auth = auth
        self.user = auth.user
        self.user_id = auth.user_id
        self.org = org
        self.org_id = org.id
        self.membership = membership
        self.role = Role(membership.role)


async def _resolve_org(orgSlug: str, auth: AuthContext, session: AsyncSession) -> Organization:
    org = await get_org_by_slug(orgSlug, session)
    if org is None:
        raise NotFoundError(guard.ORG_NOT_FOUND)
    # API keys never reach outside their own organization.
    if auth.api_key is not None and auth.api_key.organization_id != org.id:
        raise NotFoundError(guard.ORG_NOT_FOUND)
    return org


def require_org_permission(permission: Permission):
    """Dependency factory: caller must hold `permission` in the path's organization."""

    async def dependency(
        orgSlug: str,
        auth: AuthContext = Depends(get_current_identity),
        session: AsyncSession = Depends(get_session),
    ) -> OrgAccess:
        org = await _resolve_org(orgSlug, auth, session)
        restrict_to = auth.api_key.permissions if auth.api_key is not None else None
        membership, org = await guard.require_permission(
            session, auth.user_id, org.id, permission, restrict_to=restrict_to
        )
        return OrgAccess(auth, org, membership)

    return dependency


def require_org_role(*roles: Role):
    """Dependency factory: caller's role must be one of `roles`. Sessions only."""

    async def dependency(
        orgSlug: str,
        auth: AuthContext = Depends(get_current_identity),
        session: AsyncSession = Depends(get_session),
    ) -> OrgAccess:
        if auth.is_api_key:
            raise ForbiddenError("API keys cannot perform this action")
        org = await _resolve_org(orgSlug, auth, session)
        membership, org = await guard.require_role(session, auth.user_id, org.id, roles)
        return OrgAccess(auth, org, membership)

    return dependency


async def require_org_member(
    orgSlug: str,
    auth: AuthContext = Depends(get_current_identity),
    session: AsyncSession = Depends(get_session),
) -> tuple[AuthContext, Organization]:
    """Resolve the org for actions on the caller's own (possibly pending) membership."""
    if auth.is_api_key:
        raise ForbiddenError("API keys cannot perform this action")
    org = await _resolve_org(orgSlug, auth, session)
    return auth, org
