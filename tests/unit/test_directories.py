"""Tests for the user and friendship directory lookups."""

import pytest

from dtrack.errors import ConflictError, NotFoundError, TransientInfraError
from dtrack.friends.service import are_friends, get_friendship_status, list_friends
from dtrack.redis_client import user_channel
from dtrack.users.service import email_exists, get_user_by_id, username_exists


class TestUserDirectory:
    @pytest.mark.asyncio
    async def test_lookup_by_id(self, db, make_user):
        alice = await make_user(db, "alice")
        assert (await get_user_by_id(db, alice.id)).username == "alice"
        assert await get_user_by_id(db, alice.id + 100) is None

    @pytest.mark.asyncio
    async def test_email_exists_ignores_case(self, db, make_user):
        await make_user(db, "alice")
        assert await email_exists(db, "ALICE@example.com")
        assert not await email_exists(db, "bob@example.com")

    @pytest.mark.asyncio
    async def test_username_exists(self, db, make_user):
        await make_user(db, "alice")
        assert await username_exists(db, "alice")
        assert not await username_exists(db, "bob")


class TestFriendDirectory:
    @pytest.mark.asyncio
    async def test_status_is_symmetric(self, db, make_user, befriend):
        alice = await make_user(db, "alice")
        bob = await make_user(db, "bob")
        await befriend(db, alice, bob)
        forward = await get_friendship_status(db, alice.id, bob.id)
        backward = await get_friendship_status(db, bob.id, alice.id)
        assert forward is not None
        assert forward.id == backward.id

    @pytest.mark.asyncio
    async def test_pending_is_not_friends(self, db, make_user, befriend):
        alice = await make_user(db, "alice")
        bob = await make_user(db, "bob")
        await befriend(db, alice, bob, status="pending")
        assert not await are_friends(db, alice.id, bob.id)
        assert await list_friends(db, alice.id) == []

    @pytest.mark.asyncio
    async def test_list_friends_both_directions(self, db, make_user, befriend):
        alice = await make_user(db, "alice")
        bob = await make_user(db, "bob")
        carol = await make_user(db, "carol")
        dave = await make_user(db, "dave")
        await befriend(db, alice, carol)
        await befriend(db, bob, alice)
        await befriend(db, alice, dave, status="blocked")

        friends = await list_friends(db, alice.id)
        assert [u.username for u in friends] == ["bob", "carol"]
        assert await are_friends(db, carol.id, alice.id)


class TestErrorTaxonomy:
    def test_status_codes(self):
        assert NotFoundError("x").status_code == 404
        assert ConflictError("x").status_code == 409
        assert TransientInfraError("x").status_code == 503

    def test_user_channel(self):
        assert user_channel(42) == "ws:user:42"
