"""
Shared fixtures: in-memory SQLite database, a mocked identity provider,
a Redis double for rate-limit counters, and seeded organizations.
"""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from typing import Optional
from unittest.mock import AsyncMock, patch

# Settings are read once at import time; configure before importing the app.
WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"keystone-test-webhook-secret").decode()
os.environ.setdefault("KS_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("KS_SESSION_JWT_KEY", "test-session-signing-key-0123456789abcdef0123456789")
os.environ.setdefault("KS_API_KEY_HASH_SECRET", "test-api-key-hash-secret-0123456789abcdef")
os.environ.setdefault("KS_IDENTITY_WEBHOOK_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("KS_LOG_FORMAT", "console")
os.environ.setdefault("KS_LOG_LEVEL", "warning")

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, select

import app.models  # noqa: F401
from app.core.auth import create_session_token
from app.core.database import get_session
from app.core.identity_provider import IdentityProviderClient
from app.main import create_app
from app.models.audit_log import AuditLog
from app.models.base import utcnow
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from app.models.user import User
from app.services import memberships as membership_service
from keystone_shared.schemas.common import Role
from keystone_shared.schemas.organizations import OrgSettings

PROVIDER_URL = "https://idp.test/v1"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's implicit transactions break SAVEPOINT; take over BEGIN ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """A session for service-level tests and for seeding."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Identity provider (httpx MockTransport)
# ---------------------------------------------------------------------------

@dataclass
class FakeProvider:
    """Records every outbound call and answers like the provider's REST API."""

    users: dict = field(default_factory=dict)
    calls: list = field(default_factory=list)
    fail: bool = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1")
        self.calls.append((request.method, path))
        if self.fail:
            return httpx.Response(503, json={"errors": [{"message": "unavailable"}]})

        parts = path.strip("/").split("/")
        if parts[0] == "users" and request.method == "GET":
            user = self.users.get(parts[1])
            return httpx.Response(200, json=user) if user else httpx.Response(404)
        if parts == ["organizations"] and request.method == "POST":
            return httpx.Response(200, json={"id": "org_created", "slug": "created"})
        if parts[0] == "organizations" and len(parts) == 2 and request.method == "GET":
            return httpx.Response(200, json={"id": f"org_{parts[1]}", "slug": parts[1]})
        return httpx.Response(200, json={})

    def called(self, method: str, prefix: str) -> bool:
        return any(m == method and p.startswith(prefix) for m, p in self.calls)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def provider(fake_provider):
    return IdentityProviderClient(
        PROVIDER_URL,
        "sk_test_keystone",
        timeout=2.0,
        transport=httpx.MockTransport(fake_provider.handler),
    )


# ---------------------------------------------------------------------------
# Redis double for API key rate limiting
# ---------------------------------------------------------------------------

@pytest.fixture
def redis_mock():
    counters: dict[str, int] = {}

    async def incr(key):
        counters[key] = counters.get(key, 0) + 1
        return counters[key]

    mock = AsyncMock()
    mock.incr = AsyncMock(side_effect=incr)
    mock.expire = AsyncMock(return_value=True)
    mock.counters = counters
    with patch("app.core.ratelimit.get_redis", AsyncMock(return_value=mock)):
        yield mock


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

@pytest.fixture
def test_app(session_factory, provider, redis_mock):
    application = create_app(identity_provider=provider)

    async def _get_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_session] = _get_session
    return application


@pytest.fixture
async def client(test_app):
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        yield ac


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_session_token(user.external_id)}"}


def key_headers(secret: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {secret}"}


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def make_user(
    session: AsyncSession,
    external_id: str,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    user = User(
        external_id=external_id,
        email=email or f"{external_id}@example.com",
        first_name=first_name,
        last_name=last_name,
    )
    session.add(user)
    await session.flush()
    return user


async def make_org(session: AsyncSession, name: str, slug: str) -> Organization:
    org = Organization(name=name, slug=slug, settings=OrgSettings().model_dump())
    session.add(org)
    await session.flush()
    return org


async def add_member(
    session: AsyncSession,
    user: User,
    org: Organization,
    role: Role,
    *,
    joined: bool = True,
) -> OrganizationMember:
    now = utcnow()
    membership = OrganizationMember(
        user_id=user.id,
        organization_id=org.id,
        role=role.value,
        invited_at=None if joined else now,
        joined_at=now if joined else None,
    )
    session.add(membership)
    await session.flush()
    return membership


@dataclass
class Acme:
    org: Organization
    owner: User
    admin: User
    member: User
    viewer: User
    memberships: dict


@pytest.fixture
async def acme(session_factory) -> Acme:
    """Acme Corporation with one identity per role, all joined."""
    async with session_factory() as session:
        org = await make_org(session, "Acme Corporation", "acme-corp")
        users = {}
        memberships = {}
        for role in (Role.OWNER, Role.ADMIN, Role.MEMBER, Role.VIEWER):
            name = role.value.lower()
            user = await make_user(
                session, f"user_demo_{name}", f"{name}@example.com", first_name=name.title()
            )
            users[role] = user
            memberships[role] = await add_member(session, user, org, role)
        await session.commit()
    return Acme(
        org=org,
        owner=users[Role.OWNER],
        admin=users[Role.ADMIN],
        member=users[Role.MEMBER],
        viewer=users[Role.VIEWER],
        memberships=memberships,
    )


async def audit_count(session_factory, organization_id, action: Optional[str] = None) -> int:
    async with session_factory() as session:
        query = select(func.count()).select_from(AuditLog).where(
            AuditLog.organization_id == organization_id
        )
        if action:
            query = query.where(AuditLog.action == action)
        result = await session.execute(query)
        return result.scalar_one()


async def assert_single_owner(session_factory, organization_id) -> None:
    """Every org keeps exactly one OWNER through any sequence of member changes."""
    async with session_factory() as session:
        owners = await membership_service.count_owners(session, organization_id)
    assert owners == 1, f"expected exactly one owner, found {owners}"
