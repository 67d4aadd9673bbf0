"""Unit tests for GroupService — the group deck and membership."""
from datetime import timedelta

import pytest

from sqlalchemy import update

from app.errors import NotFoundError, RateLimitedError, UnauthorizedError, ValidationError
from app.models.group import Group, GroupMember
from app.services.group_service import GroupService
from app.services.rate_limiter import RateLimiter
from app.utils.clock import utcnow
from tests.conftest import PHOTO_URL


@pytest.fixture
def service(rate_limiter):
    return GroupService(rate_limiter)


async def _reload(db_session, group_id):
    return await db_session.get(Group, group_id, populate_existing=True)


class TestCreateGroup:

    @pytest.mark.asyncio
    async def test_creator_is_first_member(self, service, db_session, users):
        group = await service.create_group(
            "alice",
            db_session,
            name="<b>Hiking</b> club",
            description="Weekend trails",
            photo=PHOTO_URL,
            interests=["hiking", "  "],
        )

        assert group.name == "Hiking club"
        assert group.interests == ["hiking"]
        assert group.member_count == 1
        membership = await db_session.get(GroupMember, (group.id, "alice"))
        assert membership.status == "member"
        assert membership.profile["uid"] == "alice"

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self, service, db_session, users):
        with pytest.raises(ValidationError):
            await service.create_group("alice", db_session, name="<i></i>")

    @pytest.mark.asyncio
    async def test_foreign_photo_rejected(self, service, db_session, users):
        with pytest.raises(ValidationError):
            await service.create_group(
                "alice", db_session, name="Chess", photo="https://x.example.com/a.jpg"
            )

    @pytest.mark.asyncio
    async def test_unknown_creator(self, service, db_session, users):
        with pytest.raises(NotFoundError):
            await service.create_group("zoe", db_session, name="Chess")

    @pytest.mark.asyncio
    async def test_creation_is_rate_limited(self, db_session, users):
        service = GroupService(
            RateLimiter(rules={"groupCreate": {"window_ms": 60_000, "max_count": 1}})
        )
        await service.create_group("alice", db_session, name="Chess")
        with pytest.raises(RateLimitedError):
            await service.create_group("alice", db_session, name="Go")


class TestJoinGroup:

    @pytest.mark.asyncio
    async def test_join_adds_member_once(self, service, db_session, users):
        group = await service.create_group("alice", db_session, name="Chess")

        first = await service.join_group(group.id, "bob", db_session)
        again = await service.join_group(group.id, "bob", db_session)

        assert (first.status, first.joined) == ("member", True)
        assert (again.status, again.joined) == ("member", False)
        assert (await _reload(db_session, group.id)).member_count == 2

    @pytest.mark.asyncio
    async def test_private_group_records_pending_request(self, service, db_session, users):
        group = await service.create_group("alice", db_session, name="Book club", is_private=True)

        result = await service.join_group(group.id, "bob", db_session)

        assert result.status == "pending"
        assert (await _reload(db_session, group.id)).member_count == 1
        pending = await service.list_members(group.id, db_session, status="pending")
        assert [m.user_id for m in pending] == ["bob"]

    @pytest.mark.asyncio
    async def test_creator_approves_pending_member(self, service, db_session, users):
        group = await service.create_group("alice", db_session, name="Book club", is_private=True)
        await service.join_group(group.id, "bob", db_session)

        membership = await service.approve_member(group.id, "alice", "bob", db_session)

        assert membership.status == "member"
        assert (await _reload(db_session, group.id)).member_count == 2

    @pytest.mark.asyncio
    async def test_only_creator_can_approve(self, service, db_session, users):
        group = await service.create_group("alice", db_session, name="Book club", is_private=True)
        await service.join_group(group.id, "bob", db_session)

        with pytest.raises(UnauthorizedError):
            await service.approve_member(group.id, "carol", "bob", db_session)

    @pytest.mark.asyncio
    async def test_unknown_group(self, service, db_session, users):
        with pytest.raises(NotFoundError):
            await service.join_group("missing", "bob", db_session)


class TestGroupDeck:

    @pytest.mark.asyncio
    async def test_excludes_groups_the_viewer_belongs_to(self, service, db_session, users):
        chess = await service.create_group("alice", db_session, name="Chess")
        hiking = await service.create_group("bob", db_session, name="Hiking")
        books = await service.create_group("carol", db_session, name="Books", is_private=True)
        await service.join_group(books.id, "alice", db_session)

        deck = await service.get_groups_to_swipe("alice", db_session)

        assert [g.id for g in deck] == [hiking.id]
        assert chess.id not in {g.id for g in deck}

    @pytest.mark.asyncio
    async def test_newest_first_and_limited(self, service, db_session, users):
        ids = []
        for offset, name in enumerate(("Chess", "Hiking", "Books")):
            group = await service.create_group("carol", db_session, name=name)
            await db_session.execute(
                update(Group)
                .where(Group.id == group.id)
                .values(created_at=utcnow() - timedelta(days=10 - offset))
            )
            ids.append(group.id)

        deck = await service.get_groups_to_swipe("alice", db_session, limit=2)

        assert [g.id for g in deck] == [ids[2], ids[1]]
