"""
API key tests: issuance, authentication, scoping, revocation and rate limiting.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from unittest.mock import AsyncMock, patch

from app.core import auth
from app.core.errors import RateLimitedError, UnauthorizedError
from app.core.ratelimit import enforce_api_key_limit, window_key
from app.models.api_key import ApiKey
from app.models.base import utcnow
from keystone_shared.schemas.common import Role

from conftest import auth_headers, key_headers, make_org

KEYS = "/api/v1/orgs/acme-corp/api-keys"


async def issue_key(client: AsyncClient, user, permissions, **extra) -> dict:
    resp = await client.post(
        KEYS,
        json={"name": "ci", "permissions": permissions, **extra},
        headers=auth_headers(user),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestKeyMaterial:

    def test_generated_key_has_prefix(self):
        key = auth.generate_api_key()
        assert key.startswith("ks_live_")
        assert auth.is_api_key(key)
        assert key != auth.generate_api_key()

    def test_hash_is_deterministic_and_keyed(self):
        key = auth.generate_api_key()
        assert auth.hash_api_key(key) == auth.hash_api_key(key)
        assert auth.hash_api_key(key) != key
        assert len(auth.hash_api_key(key)) == 64


class TestIssue:

    async def test_secret_returned_once(self, client: AsyncClient, acme):
        body = await issue_key(client, acme.member, ["monitors:read", "monitors:write"])
        secret = body["secret"]
        assert secret.startswith("ks_live_")
        assert body["api_key"]["prefix"] == secret[:12]
        assert body["api_key"]["permissions"] == ["monitors:read", "monitors:write"]

        listing = await client.get(KEYS, headers=auth_headers(acme.member))
        assert listing.status_code == 200
        assert secret not in listing.text
        assert len(listing.json()["data"]) == 1

    async def test_permissions_must_be_subset_of_role(self, client: AsyncClient, acme):
        resp = await client.post(
            KEYS,
            json={"name": "too-much", "permissions": ["organization:delete"]},
            headers=auth_headers(acme.member),
        )
        assert resp.status_code == 422
        assert "organization:delete" in resp.json()["error"]["message"]

    async def test_viewer_cannot_issue(self, client: AsyncClient, acme):
        resp = await client.post(
            KEYS, json={"name": "v", "permissions": ["monitors:read"]}, headers=auth_headers(acme.viewer)
        )
        assert resp.status_code == 403

    async def test_expiry_must_be_future(self, client: AsyncClient, acme):
        resp = await client.post(
            KEYS,
            json={
                "name": "old",
                "permissions": ["monitors:read"],
                "expires_at": (utcnow() - timedelta(days=1)).isoformat(),
            },
            headers=auth_headers(acme.owner),
        )
        assert resp.status_code == 422


class TestAuthenticate:

    async def test_key_authenticates_and_is_scoped(self, client: AsyncClient, acme):
        secret = (await issue_key(client, acme.admin, ["monitors:read"]))["secret"]

        ok = await client.get("/api/v1/orgs/acme-corp/monitors", headers=key_headers(secret))
        assert ok.status_code == 200

        # Admin's role allows writes, the key does not.
        denied = await client.post(
            "/api/v1/orgs/acme-corp/monitors",
            json={"name": "x", "url": "https://example.com"},
            headers=key_headers(secret),
        )
        assert denied.status_code == 403

    async def test_key_cannot_reach_other_org(self, client: AsyncClient, acme, session_factory):
        async with session_factory() as s:
            await make_org(s, "Other", "other-org")
            await s.commit()
        secret = (await issue_key(client, acme.owner, ["organization:read"]))["secret"]
        resp = await client.get("/api/v1/orgs/other-org", headers=key_headers(secret))
        assert resp.status_code == 404

    async def test_key_cannot_manage_org(self, client: AsyncClient, acme):
        secret = (await issue_key(client, acme.owner, ["organization:write"]))["secret"]
        resp = await client.patch(
            "/api/v1/orgs/acme-corp", json={"name": "Via Key"}, headers=key_headers(secret)
        )
        assert resp.status_code == 403
        create = await client.post(
            "/api/v1/orgs", json={"name": "Key Org", "slug": "key-org"}, headers=key_headers(secret)
        )
        assert create.status_code == 403

    async def test_me_is_filtered_to_key_org(self, client: AsyncClient, acme):
        secret = (await issue_key(client, acme.owner, ["organization:read"]))["secret"]
        resp = await client.get("/api/v1/me", headers=key_headers(secret))
        assert resp.status_code == 200
        body = resp.json()
        assert body["authenticated_via"] == "api_key"
        assert [o["slug"] for o in body["organizations"]] == ["acme-corp"]

    async def test_role_downgrade_narrows_key(self, client: AsyncClient, acme):
        """Key permissions are intersected with the holder's current role."""
        secret = (await issue_key(client, acme.member, ["monitors:read", "monitors:write"]))["secret"]
        demote = await client.patch(
            f"/api/v1/orgs/acme-corp/members/{acme.memberships[Role.MEMBER].id}",
            json={"role": "VIEWER"},
            headers=auth_headers(acme.owner),
        )
        assert demote.status_code == 200

        resp = await client.post(
            "/api/v1/orgs/acme-corp/monitors",
            json={"name": "x", "url": "https://example.com"},
            headers=key_headers(secret),
        )
        assert resp.status_code == 403
        assert (
            await client.get("/api/v1/orgs/acme-corp/monitors", headers=key_headers(secret))
        ).status_code == 200

    @pytest.mark.parametrize("state", ["unknown", "revoked", "expired"])
    async def test_uniform_failure(self, db, acme, state):
        secret = auth.generate_api_key()
        if state != "unknown":
            db.add(
                ApiKey(
                    organization_id=acme.org.id,
                    user_id=acme.owner.id,
                    name=state,
                    key_hash=auth.hash_api_key(secret),
                    prefix=secret[:12],
                    permissions=["organization:read"],
                    is_active=state != "revoked",
                    expires_at=utcnow() - timedelta(minutes=1) if state == "expired" else None,
                )
            )
            await db.flush()
        with pytest.raises(UnauthorizedError) as exc:
            await auth.authenticate_api_key(db, secret)
        assert exc.value.detail == auth.INVALID_API_KEY

    async def test_success_updates_last_used(self, db, acme):
        secret = auth.generate_api_key()
        row = ApiKey(
            organization_id=acme.org.id,
            user_id=acme.owner.id,
            name="used",
            key_hash=auth.hash_api_key(secret),
            prefix=secret[:12],
            permissions=["organization:read"],
        )
        db.add(row)
        await db.flush()
        found = await auth.authenticate_api_key(db, secret)
        assert found.id == row.id
        assert found.last_used_at is not None


class TestRevoke:

    async def test_revoked_key_stops_working(self, client: AsyncClient, acme):
        issued = await issue_key(client, acme.owner, ["organization:read"])
        secret, key_id = issued["secret"], issued["api_key"]["id"]

        resp = await client.delete(f"{KEYS}/{key_id}", headers=auth_headers(acme.owner))
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        after = await client.get("/api/v1/orgs/acme-corp", headers=key_headers(secret))
        assert after.status_code == 401
        assert after.json()["error"]["message"] == auth.INVALID_API_KEY

    async def test_member_cannot_revoke(self, client: AsyncClient, acme):
        issued = await issue_key(client, acme.owner, ["organization:read"])
        resp = await client.delete(f"{KEYS}/{issued['api_key']['id']}", headers=auth_headers(acme.member))
        assert resp.status_code == 403


class TestRateLimit:

    async def test_exceeding_limit_returns_429(self, client: AsyncClient, acme):
        secret = (await issue_key(client, acme.owner, ["organization:read"], rate_limit=2))["secret"]
        for _ in range(2):
            ok = await client.get("/api/v1/orgs/acme-corp", headers=key_headers(secret))
            assert ok.status_code == 200
        limited = await client.get("/api/v1/orgs/acme-corp", headers=key_headers(secret))
        assert limited.status_code == 429
        assert limited.json()["error"]["code"] == "rate_limited"
        assert int(limited.headers["Retry-After"]) > 0

    async def test_window_key_buckets(self):
        assert window_key("k", 60, now=120.0) == window_key("k", 60, now=179.0)
        assert window_key("k", 60, now=120.0) != window_key("k", 60, now=180.0)

    async def test_first_hit_sets_expiry(self, redis_mock):
        count = await enforce_api_key_limit("key-1", 5, 60, now=1000.0)
        assert count == 1
        redis_mock.expire.assert_awaited_once_with(window_key("key-1", 60, 1000.0), 60)

    async def test_limit_error_carries_retry_after(self, redis_mock):
        await enforce_api_key_limit("key-2", 1, 60, now=1000.0)
        with pytest.raises(RateLimitedError) as exc:
            await enforce_api_key_limit("key-2", 1, 60, now=1010.0)
        assert exc.value.headers["Retry-After"] == "10"

    async def test_redis_outage_allows_request(self):
        broken = AsyncMock()
        broken.incr = AsyncMock(side_effect=RedisConnectionError("down"))
        with patch("app.core.ratelimit.get_redis", AsyncMock(return_value=broken)):
            assert await enforce_api_key_limit("key-3", 1, 60) == 0
