"""
Membership store tests: uniqueness, the owner invariant, conditional updates.
"""

import uuid
from unittest.mock import patch

import pytest

from app.core.errors import ConflictError, InvalidOperationError, NotFoundError
from app.services import memberships
from keystone_shared.schemas.common import Role

from conftest import add_member, make_org, make_user


@pytest.fixture
async def org_with_owner(db):
    org = await make_org(db, "Globex", "globex")
    owner = await make_user(db, "user_globex_owner")
    owner_membership = await add_member(db, owner, org, Role.OWNER)
    return org, owner, owner_membership


class TestCreate:

    async def test_create_joined(self, db, org_with_owner):
        org, _, _ = org_with_owner
        user = await make_user(db, "user_new")
        membership = await memberships.create(db, user.id, org.id, Role.MEMBER)
        assert membership.role == "MEMBER"
        assert membership.joined_at is not None
        assert not membership.is_pending

    async def test_create_pending(self, db, org_with_owner):
        org, _, _ = org_with_owner
        user = await make_user(db, "user_pending")
        membership = await memberships.create(db, user.id, org.id, Role.VIEWER, joined=False)
        assert membership.is_pending

    async def test_duplicate_pair_conflicts(self, db, org_with_owner):
        org, owner, _ = org_with_owner
        with pytest.raises(ConflictError):
            await memberships.create(db, owner.id, org.id, Role.MEMBER)


class TestSetRole:

    async def test_changes_role(self, db, org_with_owner):
        org, _, _ = org_with_owner
        user = await make_user(db, "user_promote")
        membership = await add_member(db, user, org, Role.VIEWER)
        updated = await memberships.set_role(db, membership.id, Role.ADMIN)
        assert updated.role == "ADMIN"

    async def test_owner_row_is_rejected(self, db, org_with_owner):
        _, _, owner_membership = org_with_owner
        with pytest.raises(InvalidOperationError):
            await memberships.set_role(db, owner_membership.id, Role.ADMIN)

    async def test_owner_cannot_be_assigned(self, db, org_with_owner):
        org, _, _ = org_with_owner
        user = await make_user(db, "user_no_owner")
        membership = await add_member(db, user, org, Role.ADMIN)
        with pytest.raises(InvalidOperationError):
            await memberships.set_role(db, membership.id, Role.OWNER)

    async def test_unknown_membership(self, db):
        with pytest.raises(NotFoundError):
            await memberships.set_role(db, uuid.uuid4(), Role.MEMBER)

    async def test_concurrent_change_conflicts(self, db, org_with_owner):
        """A role change keyed on a stale role matches no row."""
        org, _, _ = org_with_owner
        user = await make_user(db, "user_race")
        membership = await add_member(db, user, org, Role.MEMBER)

        real_get = memberships.get

        async def stale_get(session, membership_id):
            row = await real_get(session, membership_id)
            session.expunge(row)
            row.role = "VIEWER"  # what a concurrent reader saw before the other write
            return row

        with patch.object(memberships, "get", stale_get):
            with pytest.raises(ConflictError):
                await memberships.set_role(db, membership.id, Role.ADMIN)


class TestRemove:

    async def test_removes_member(self, db, org_with_owner):
        org, _, _ = org_with_owner
        user = await make_user(db, "user_leaving")
        membership = await add_member(db, user, org, Role.MEMBER)
        await memberships.remove(db, membership.id)
        assert await memberships.get_for(db, user.id, org.id) is None

    async def test_owner_cannot_be_removed(self, db, org_with_owner):
        _, _, owner_membership = org_with_owner
        with pytest.raises(InvalidOperationError):
            await memberships.remove(db, owner_membership.id)


class TestAccept:

    async def test_accept_pending(self, db, org_with_owner):
        org, _, _ = org_with_owner
        user = await make_user(db, "user_invited")
        await add_member(db, user, org, Role.MEMBER, joined=False)
        membership = await memberships.accept(db, user.id, org.id)
        assert membership.joined_at is not None

    async def test_accept_twice_is_invalid(self, db, org_with_owner):
        org, owner, _ = org_with_owner
        with pytest.raises(InvalidOperationError):
            await memberships.accept(db, owner.id, org.id)

    async def test_accept_without_membership_hides_org(self, db, org_with_owner):
        org, _, _ = org_with_owner
        stranger = await make_user(db, "user_stranger")
        with pytest.raises(NotFoundError):
            await memberships.accept(db, stranger.id, org.id)


class TestQueries:

    async def test_list_orders_owner_first_and_pending_last(self, db, org_with_owner):
        org, _, _ = org_with_owner
        viewer = await make_user(db, "user_v")
        admin = await make_user(db, "user_a")
        pending = await make_user(db, "user_p")
        await add_member(db, viewer, org, Role.VIEWER)
        await add_member(db, admin, org, Role.ADMIN)
        await add_member(db, pending, org, Role.ADMIN, joined=False)

        rows = await memberships.list_by_organization(db, org.id)
        assert [(m.role, u.external_id) for m, u in rows] == [
            ("OWNER", "user_globex_owner"),
            ("ADMIN", "user_a"),
            ("ADMIN", "user_p"),
            ("VIEWER", "user_v"),
        ]

    async def test_list_pending(self, db, org_with_owner):
        org, _, _ = org_with_owner
        pending = await make_user(db, "user_waiting")
        await add_member(db, pending, org, Role.MEMBER, joined=False)
        rows = await memberships.list_pending(db, org.id)
        assert [u.external_id for _, u in rows] == ["user_waiting"]

    async def test_owner_count_and_invariant(self, db, org_with_owner):
        org, _, _ = org_with_owner
        assert await memberships.count_owners(db, org.id) == 1
        await memberships.ensure_owner_remains(db, org.id)

        empty = await make_org(db, "Empty", "empty")
        with pytest.raises(InvalidOperationError):
            await memberships.ensure_owner_remains(db, empty.id)
