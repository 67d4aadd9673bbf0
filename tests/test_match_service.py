"""Unit tests for MatchService — deterministic keys and the unmatch/rematch lifecycle."""
import pytest

from app.errors import NotFoundError, UnauthorizedError, ValidationError
from app.models.match import Match, match_key
from app.models.user import User
from app.utils.clock import ensure_utc, utcnow


class TestMatchKey:

    def test_symmetric(self):
        assert match_key("alice", "bob") == match_key("bob", "alice") == "alice_bob"

    def test_sorted_lexicographically(self):
        assert match_key("zed", "Amy") == "Amy_zed"

    def test_ids_containing_separator_refused(self):
        with pytest.raises(ValueError):
            match_key("a_b", "c")
        with pytest.raises(ValueError):
            match_key("a", "b_c")


class TestCreateOrReactivate:

    @pytest.mark.asyncio
    async def test_creates_with_profile_snapshots(self, match_service, db_session, users):
        outcome = await match_service.create_or_reactivate_match("bob", "alice", db_session)
        assert outcome.created is True
        assert outcome.match_id == "alice_bob"

        match = await db_session.get(Match, "alice_bob")
        assert match.user_a_id == "alice" and match.user_b_id == "bob"
        assert set(match.user_profiles) == {"alice", "bob"}
        assert match.user_profiles["bob"]["display_name"] == "Bob"
        assert match.is_super_like is False
        assert match.unread_count_a == match.unread_count_b == 0

    @pytest.mark.asyncio
    async def test_second_call_is_idempotent(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        outcome = await match_service.create_or_reactivate_match("bob", "alice", db_session)
        assert outcome.created is False and outcome.reactivated is False
        assert outcome.match_id == "alice_bob"

    @pytest.mark.asyncio
    async def test_self_match_rejected(self, match_service, db_session, users):
        with pytest.raises(ValidationError):
            await match_service.create_or_reactivate_match("alice", "alice", db_session)

    @pytest.mark.asyncio
    async def test_super_like_needs_member_initiator(self, match_service, db_session, users):
        with pytest.raises(ValidationError):
            await match_service.create_or_reactivate_match(
                "alice", "bob", db_session, is_super_like=True, super_liked_by="carol"
            )

    @pytest.mark.asyncio
    async def test_colliding_pairs_cannot_share_a_match(self, match_service, db_session, users):
        for uid in ("a_b", "c", "a", "b_c"):
            db_session.add(User(id=uid, email=f"{uid.replace('_', '.')}@uni.example.edu", display_name=uid))
        await db_session.flush()

        with pytest.raises(ValidationError):
            await match_service.create_or_reactivate_match("a_b", "c", db_session)
        with pytest.raises(ValidationError):
            await match_service.create_or_reactivate_match("a", "b_c", db_session)
        assert await db_session.get(Match, "a_b_c") is None

    @pytest.mark.asyncio
    async def test_key_owned_by_another_pair_is_refused(self, match_service, db_session, users):
        db_session.add(
            Match(
                id="alice_bob",
                user_a_id="alice",
                user_b_id="carol",
                user_profiles={},
                created_at=utcnow(),
                unmatched=False,
                is_super_like=False,
                unread_count_a=0,
                unread_count_b=0,
            )
        )
        await db_session.flush()

        with pytest.raises(ValidationError):
            await match_service.create_or_reactivate_match("alice", "bob", db_session)
        match = await db_session.get(Match, "alice_bob")
        assert match.member_ids == ("alice", "carol")

    @pytest.mark.asyncio
    async def test_super_like_records_initiator(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match(
            "alice", "bob", db_session, is_super_like=True, super_liked_by="bob"
        )
        match = await db_session.get(Match, "alice_bob")
        assert match.is_super_like is True
        assert match.super_liked_by == "bob"


class TestUnmatchRematch:

    @pytest.mark.asyncio
    async def test_unmatch_then_rematch_reuses_id(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match(
            "alice", "bob", db_session, is_super_like=True, super_liked_by="alice"
        )
        unmatched = await match_service.unmatch("alice_bob", "bob", db_session)
        assert unmatched.unmatched is True
        assert unmatched.unmatched_by == "bob"
        assert unmatched.unmatched_at is not None

        outcome = await match_service.create_or_reactivate_match("alice", "bob", db_session)
        assert outcome.reactivated is True
        assert outcome.match_id == "alice_bob"

        match = await match_service.get_match("alice_bob", "alice", db_session)
        assert match.unmatched is False
        assert match.unmatched_by is None
        assert match.rematched_at is not None
        # Super-like metadata is overwritten by the reactivating event.
        assert match.is_super_like is False
        assert match.super_liked_by is None

    @pytest.mark.asyncio
    async def test_rematch_refreshes_snapshots(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        await match_service.unmatch("alice_bob", "alice", db_session)
        users["bob"].display_name = "Roberto"
        await db_session.flush()

        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        match = await db_session.get(Match, "alice_bob")
        assert match.user_profiles["bob"]["display_name"] == "Roberto"

    @pytest.mark.asyncio
    async def test_unmatch_is_idempotent(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        first = await match_service.unmatch("alice_bob", "alice", db_session)
        at = first.unmatched_at
        second = await match_service.unmatch("alice_bob", "bob", db_session)
        assert second.unmatched_by == "alice"
        assert ensure_utc(second.unmatched_at) == ensure_utc(at)

    @pytest.mark.asyncio
    async def test_unmatch_requires_membership(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        with pytest.raises(UnauthorizedError):
            await match_service.unmatch("alice_bob", "carol", db_session)

    @pytest.mark.asyncio
    async def test_unmatch_missing_match(self, match_service, db_session, users):
        with pytest.raises(NotFoundError):
            await match_service.unmatch("alice_carol", "alice", db_session)


class TestListAndPropagate:

    @pytest.mark.asyncio
    async def test_list_hides_unmatched_by_default(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        await match_service.create_or_reactivate_match("alice", "carol", db_session)
        await match_service.unmatch("alice_carol", "carol", db_session)

        active = await match_service.list_matches("alice", db_session)
        everything = await match_service.list_matches(
            "alice", db_session, include_unmatched=True
        )
        assert [m.id for m in active] == ["alice_bob"]
        assert {m.id for m in everything} == {"alice_bob", "alice_carol"}

    @pytest.mark.asyncio
    async def test_propagate_updates_every_match(self, match_service, db_session, users):
        await match_service.create_or_reactivate_match("alice", "bob", db_session)
        await match_service.create_or_reactivate_match("alice", "carol", db_session)
        await match_service.unmatch("alice_carol", "alice", db_session)

        user = await db_session.get(User, "alice")
        user.bio = "new bio"
        await db_session.flush()

        outcome = await match_service.propagate_profile_update("alice", db_session)
        assert outcome.is_ok and outcome.value == 2
        for mid in ("alice_bob", "alice_carol"):
            match = await db_session.get(Match, mid, populate_existing=True)
            assert match.user_profiles["alice"]["bio"] == "new bio"

    @pytest.mark.asyncio
    async def test_propagate_unknown_user_is_soft(self, match_service, db_session, users):
        outcome = await match_service.propagate_profile_update("ghost", db_session)
        assert outcome.is_soft_failure
