"""
Integration tests for Organization endpoints and lifecycle.

Tests cover:
- Org create, list, get, update, settings and delete
- Role gating and the not-found rule for non-members
- Identity provider mirroring
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlmodel import select

from app.models.base import utcnow
from app.models.membership import OrganizationMember
from app.models.organization import Organization
from app.models.subscription import Subscription

from conftest import assert_single_owner, audit_count, auth_headers, make_user


# ---------------------------------------------------------------------------
# Schema and helper tests (no DB needed)
# ---------------------------------------------------------------------------

class TestOrgSettingsValidation:
    """Test OrgSettings Pydantic model validation."""

    def test_defaults(self):
        from keystone_shared.schemas.organizations import OrgSettings
        s = OrgSettings()
        assert s.timezone == "UTC"
        assert s.currency == "usd"
        assert s.features == []

    def test_unknown_keys_are_kept(self):
        from keystone_shared.schemas.organizations import OrgSettings
        s = OrgSettings.model_validate({"branding": {"color": "#fff"}})
        assert s.model_dump()["branding"] == {"color": "#fff"}

    def test_bad_currency(self):
        from keystone_shared.schemas.organizations import OrgSettings
        with pytest.raises(Exception):
            OrgSettings(currency="US Dollars")

    def test_deep_merge(self):
        from app.services.organizations import _deep_merge
        base = {"a": {"b": 1, "c": 2}, "d": 3}
        patch = {"a": {"b": 10}, "e": 5}
        result = _deep_merge(base, patch)
        assert result == {"a": {"b": 10, "c": 2}, "d": 3, "e": 5}

    def test_slugify(self):
        from app.services.organizations import slugify
        assert slugify("  Acme  Corporation ") == "acme-corporation"


class TestOrgCreateValidation:

    def test_slug_pattern(self):
        from keystone_shared.schemas.organizations import OrgCreateRequest
        with pytest.raises(Exception):
            OrgCreateRequest(name="Acme", slug="Acme Corp")

    def test_delete_requires_confirmation(self):
        from keystone_shared.schemas.organizations import OrgDeleteRequest
        with pytest.raises(Exception):
            OrgDeleteRequest(confirmation_text="delete")


# ---------------------------------------------------------------------------
# Endpoint tests
# ---------------------------------------------------------------------------

class TestCreateOrg:

    async def test_creator_becomes_joined_owner(self, client: AsyncClient, session_factory, fake_provider):
        async with session_factory() as s:
            founder = await make_user(s, "user_founder", "founder@example.com")
            await s.commit()

        resp = await client.post(
            "/api/v1/orgs",
            json={"name": "Acme Corporation", "slug": "acme-corp", "description": "Rockets"},
            headers=auth_headers(founder),
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["slug"] == "acme-corp"
        assert data["settings"]["currency"] == "usd"
        assert fake_provider.called("POST", "/organizations")

        async with session_factory() as s:
            rows = (
                await s.execute(
                    select(OrganizationMember).where(OrganizationMember.user_id == founder.id)
                )
            ).scalars().all()
        assert [m.role for m in rows] == ["OWNER"]
        assert rows[0].joined_at is not None
        assert await audit_count(session_factory, rows[0].organization_id, "organization.created") == 1
        await assert_single_owner(session_factory, rows[0].organization_id)

    async def test_duplicate_slug_conflicts(self, client: AsyncClient, acme):
        resp = await client.post(
            "/api/v1/orgs",
            json={"name": "Other Acme", "slug": "acme-corp"},
            headers=auth_headers(acme.viewer),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    async def test_provider_failure_aborts_creation(self, client: AsyncClient, session_factory, fake_provider):
        async with session_factory() as s:
            founder = await make_user(s, "user_unlucky")
            await s.commit()
        fake_provider.fail = True

        resp = await client.post(
            "/api/v1/orgs",
            json={"name": "Doomed", "slug": "doomed"},
            headers=auth_headers(founder),
        )
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "upstream_error"
        async with session_factory() as s:
            assert (await s.execute(select(Organization).where(Organization.slug == "doomed"))).first() is None

    async def test_slug_race_undoes_provider_org(self, client: AsyncClient, acme, session_factory, fake_provider):
        # The pre-check misses a concurrent insert; the unique index catches it.
        with patch("app.services.organizations.get_org_by_slug", AsyncMock(return_value=None)):
            resp = await client.post(
                "/api/v1/orgs",
                json={"name": "Late Acme", "slug": "acme-corp"},
                headers=auth_headers(acme.viewer),
            )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"
        assert fake_provider.called("POST", "/organizations")
        assert fake_provider.called("DELETE", "/organizations/org_acme-corp")

        async with session_factory() as s:
            orgs = (await s.execute(select(Organization).where(Organization.slug == "acme-corp"))).scalars().all()
        assert [o.name for o in orgs] == ["Acme Corporation"]
        await assert_single_owner(session_factory, acme.org.id)

    async def test_invalid_body(self, client: AsyncClient, acme):
        resp = await client.post(
            "/api/v1/orgs", json={"name": "A", "slug": "no spaces"}, headers=auth_headers(acme.owner)
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "slug" in error["field_errors"]

    async def test_requires_authentication(self, client: AsyncClient):
        resp = await client.post("/api/v1/orgs", json={"name": "Anon", "slug": "anon"})
        assert resp.status_code == 401


class TestReadOrg:

    async def test_list_orgs(self, client: AsyncClient, acme):
        resp = await client.get("/api/v1/orgs", headers=auth_headers(acme.member))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [(o["slug"], o["role"]) for o in data] == [("acme-corp", "MEMBER")]

    async def test_get_with_role_and_counts(self, client: AsyncClient, acme):
        resp = await client.get("/api/v1/orgs/acme-corp", headers=auth_headers(acme.viewer))
        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "VIEWER"
        assert data["counts"]["members"] == 4

    async def test_non_member_sees_not_found(self, client: AsyncClient, acme, session_factory):
        async with session_factory() as s:
            outsider = await make_user(s, "user_outsider")
            await s.commit()
        hidden = await client.get("/api/v1/orgs/acme-corp", headers=auth_headers(outsider))
        missing = await client.get("/api/v1/orgs/no-such-org", headers=auth_headers(outsider))
        assert hidden.status_code == missing.status_code == 404
        assert hidden.json() == missing.json()


class TestUpdateOrg:

    async def test_admin_can_rename(self, client: AsyncClient, acme, session_factory, fake_provider):
        resp = await client.patch(
            "/api/v1/orgs/acme-corp", json={"name": "Acme Corp"}, headers=auth_headers(acme.admin)
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Acme Corp"
        assert resp.json()["slug"] == "acme-corp"
        assert fake_provider.called("PATCH", "/organizations/org_acme-corp")
        assert await audit_count(session_factory, acme.org.id, "organization.updated") == 1

    async def test_mirror_failure_does_not_fail_update(self, client: AsyncClient, acme, fake_provider):
        fake_provider.fail = True
        resp = await client.patch(
            "/api/v1/orgs/acme-corp", json={"name": "Still Saved"}, headers=auth_headers(acme.owner)
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Still Saved"

    async def test_viewer_is_forbidden(self, client: AsyncClient, acme, session_factory):
        resp = await client.patch(
            "/api/v1/orgs/acme-corp", json={"name": "Hijacked"}, headers=auth_headers(acme.viewer)
        )
        assert resp.status_code == 403
        assert await audit_count(session_factory, acme.org.id) == 0

    async def test_settings_merge_and_replace(self, client: AsyncClient, acme):
        merged = await client.put(
            "/api/v1/orgs/acme-corp/settings",
            json={"settings": {"timezone": "America/New_York", "features": ["monitoring"]}},
            headers=auth_headers(acme.owner),
        )
        assert merged.status_code == 200
        assert merged.json()["settings"]["timezone"] == "America/New_York"
        assert merged.json()["settings"]["currency"] == "usd"

        replaced = await client.put(
            "/api/v1/orgs/acme-corp/settings",
            json={"settings": {"currency": "eur"}, "merge": False},
            headers=auth_headers(acme.admin),
        )
        assert replaced.status_code == 200
        assert replaced.json()["settings"]["currency"] == "eur"
        assert replaced.json()["settings"]["timezone"] == "UTC"

    async def test_invalid_settings(self, client: AsyncClient, acme):
        resp = await client.put(
            "/api/v1/orgs/acme-corp/settings",
            json={"settings": {"currency": "dollars"}},
            headers=auth_headers(acme.owner),
        )
        assert resp.status_code == 422


class TestDeleteOrg:

    async def test_owner_deletes(self, client: AsyncClient, acme, session_factory, fake_provider):
        resp = await client.request(
            "DELETE",
            "/api/v1/orgs/acme-corp",
            json={"confirmation_text": "DELETE"},
            headers=auth_headers(acme.owner),
        )
        assert resp.status_code == 204
        assert fake_provider.called("DELETE", "/organizations/org_acme-corp")
        async with session_factory() as s:
            assert (await s.execute(select(Organization).where(Organization.slug == "acme-corp"))).first() is None
            remaining = await s.execute(
                select(OrganizationMember).where(OrganizationMember.organization_id == acme.org.id)
            )
            assert remaining.first() is None

    async def test_admin_cannot_delete(self, client: AsyncClient, acme, session_factory):
        resp = await client.request(
            "DELETE",
            "/api/v1/orgs/acme-corp",
            json={"confirmation_text": "DELETE"},
            headers=auth_headers(acme.admin),
        )
        assert resp.status_code == 403
        await assert_single_owner(session_factory, acme.org.id)

    async def test_missing_confirmation(self, client: AsyncClient, acme):
        resp = await client.request(
            "DELETE", "/api/v1/orgs/acme-corp", json={}, headers=auth_headers(acme.owner)
        )
        assert resp.status_code == 422

    async def test_active_subscription_blocks_delete(self, client: AsyncClient, acme, session_factory):
        async with session_factory() as s:
            now = utcnow()
            s.add(
                Subscription(
                    organization_id=acme.org.id,
                    provider_subscription_id="sub_demo_acme_pro",
                    status="ACTIVE",
                    plan_id="price_pro_monthly",
                    plan_name="Pro Plan",
                    price_amount=4900,
                    current_period_start=now,
                    current_period_end=now + timedelta(days=30),
                )
            )
            await s.commit()

        resp = await client.request(
            "DELETE",
            "/api/v1/orgs/acme-corp",
            json={"confirmation_text": "DELETE"},
            headers=auth_headers(acme.owner),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "invalid_operation"
        await assert_single_owner(session_factory, acme.org.id)
