"""
Audit recorder tests.
"""

from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import SQLAlchemyError
from starlette.requests import Request

from app.services import audit
from app.services.audit import RequestContext

from conftest import make_org, make_user


class TestRecord:

    async def test_record_and_list_newest_first(self, db):
        org = await make_org(db, "Umbrella", "umbrella")
        actor = await make_user(db, "user_umbrella")
        ctx = RequestContext(ip_address="10.0.0.1", user_agent="pytest")

        first = await audit.record(
            db, org.id, actor.id, "monitor.created", "monitor", "m1", {"name": "a"}, ctx
        )
        second = await audit.record(db, org.id, actor.id, "monitor.deleted", "monitor", "m1")
        assert first is not None and second is not None

        entries = await audit.list_entries(db, org.id)
        assert {e.action for e in entries} == {"monitor.created", "monitor.deleted"}

        created = next(e for e in entries if e.action == "monitor.created")
        payload = audit.to_response(created)
        assert payload["metadata"] == {"name": "a"}
        assert payload["ip_address"] == "10.0.0.1"
        assert payload["user_agent"] == "pytest"
        assert payload["resource_id"] == "m1"

    async def test_system_actor(self, db):
        org = await make_org(db, "Hooli", "hooli")
        entry = await audit.record(db, org.id, None, "organization.updated", "organization", org.id)
        assert entry.actor_id is None
        assert entry.resource_id == str(org.id)
        assert entry.details == {}

    async def test_write_failure_is_swallowed(self, db):
        org = await make_org(db, "Vandelay", "vandelay")
        with patch.object(db, "flush", AsyncMock(side_effect=SQLAlchemyError("disk full"))):
            result = await audit.record(db, org.id, None, "organization.updated", "organization", org.id)
        assert result is None
        assert await audit.list_entries(db, org.id) == []

    async def test_limit(self, db):
        org = await make_org(db, "Soylent", "soylent")
        for i in range(5):
            await audit.record(db, org.id, None, "monitor.updated", "monitor", str(i))
        assert len(await audit.list_entries(db, org.id, limit=3)) == 3


def _request(headers: dict, client=("127.0.0.1", 51000)) -> Request:
    return Request(
        {
            "type": "http",
            "method": "GET",
            "path": "/",
            "headers": [(k.encode(), v.encode()) for k, v in headers.items()],
            "client": client,
        }
    )


class TestRequestContext:

    def test_prefers_forwarded_for(self):
        ctx = RequestContext.from_request(
            _request({"x-forwarded-for": "203.0.113.9, 10.0.0.2", "user-agent": "curl"})
        )
        assert ctx.ip_address == "203.0.113.9"
        assert ctx.user_agent == "curl"

    def test_falls_back_to_client_host(self):
        assert RequestContext.from_request(_request({})).ip_address == "127.0.0.1"
