"""Unit tests for ConversationService — messages, previews and unread counters."""
import asyncio

import pytest

from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.sql.dml import Update

from app.database import Base, configure_sqlite

from app.errors import EmptyMessageError, NotFoundError, UnauthorizedError, ValidationError
from app.models.match import Match
from app.models.message import DELETED_PLACEHOLDER, Message
from app.services.conversation_service import IMAGE_PREVIEW, ConversationService
from app.services.match_service import MatchService
from tests.conftest import PHOTO_URL, create_user


@pytest.fixture
def service(rate_limiter, match_service):
    return ConversationService(rate_limiter, match_service=match_service)


@pytest.fixture
async def match(match_service, db_session, users):
    await match_service.create_or_reactivate_match("alice", "bob", db_session)
    return await db_session.get(Match, "alice_bob")


async def _reload_match(db_session):
    return await db_session.get(Match, "alice_bob", populate_existing=True)


class TestSendMessage:

    @pytest.mark.asyncio
    async def test_increments_recipient_counter_and_preview(self, service, match, db_session):
        await service.send_message("alice_bob", "alice", "hey!", db_session)
        await service.send_message("alice_bob", "alice", "how are you?", db_session)

        match = await _reload_match(db_session)
        assert match.unread_count_for("bob") == 2
        assert match.unread_count_for("alice") == 0
        assert match.last_message == "how are you?"
        assert match.last_message_sender_id == "alice"
        assert match.last_message_at is not None

    @pytest.mark.asyncio
    async def test_markup_is_stripped(self, service, match, db_session):
        message = await service.send_message(
            "alice_bob", "alice", "<script>alert(1)</script>hello", db_session
        )
        assert "<" not in message.text
        assert "hello" in message.text

    @pytest.mark.asyncio
    async def test_image_only_message_uses_photo_preview(self, service, match, db_session):
        message = await service.send_message(
            "alice_bob", "bob", "", db_session, image_url=PHOTO_URL
        )
        assert message.message_type == "image"
        match = await _reload_match(db_session)
        assert match.last_message == IMAGE_PREVIEW

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, service, match, db_session):
        with pytest.raises(EmptyMessageError):
            await service.send_message("alice_bob", "alice", "   ", db_session)

    @pytest.mark.asyncio
    async def test_non_http_image_counts_as_empty(self, service, match, db_session):
        with pytest.raises(EmptyMessageError):
            await service.send_message(
                "alice_bob", "alice", "", db_session, image_url="javascript:alert(1)"
            )

    @pytest.mark.asyncio
    async def test_unknown_match(self, service, db_session, users):
        with pytest.raises(NotFoundError):
            await service.send_message("alice_carol", "alice", "hi", db_session)

    @pytest.mark.asyncio
    async def test_unmatched_is_rejected(self, service, match_service, match, db_session):
        await match_service.unmatch("alice_bob", "bob", db_session)
        with pytest.raises(ValidationError):
            await service.send_message("alice_bob", "alice", "hi", db_session)

    @pytest.mark.asyncio
    async def test_non_member_rejected(self, service, match, db_session):
        with pytest.raises(UnauthorizedError):
            await service.send_message("alice_bob", "carol", "hi", db_session)

    @pytest.mark.asyncio
    async def test_reply_copies_quoted_fields(self, service, match, db_session):
        original = await service.send_message("alice_bob", "alice", "pizza tonight?", db_session)
        reply = await service.send_message(
            "alice_bob", "bob", "yes!", db_session, reply_to_id=original.id
        )
        assert reply.reply_to_id == original.id
        assert reply.reply_to_text == "pizza tonight?"
        assert reply.reply_to_sender_id == "alice"

    @pytest.mark.asyncio
    async def test_reply_to_unknown_message(self, service, match, db_session):
        with pytest.raises(NotFoundError):
            await service.send_message(
                "alice_bob", "bob", "yes!", db_session, reply_to_id="does-not-exist"
            )

    @pytest.mark.asyncio
    async def test_messages_survive_unmatch(self, service, match_service, match, db_session):
        await service.send_message("alice_bob", "alice", "first", db_session)
        await match_service.unmatch("alice_bob", "alice", db_session)
        messages = await service.get_messages("alice_bob", "bob", db_session)
        assert [m.text for m in messages] == ["first"]


class TestEditAndDelete:

    @pytest.mark.asyncio
    async def test_sender_can_edit(self, service, match, db_session):
        message = await service.send_message("alice_bob", "alice", "helo", db_session)
        edited = await service.edit_message("alice_bob", message.id, "alice", "hello", db_session)

        assert edited.text == "hello"
        assert edited.edited is True and edited.edited_at is not None
        assert (await _reload_match(db_session)).last_message == "hello"

    @pytest.mark.asyncio
    async def test_only_sender_can_edit(self, service, match, db_session):
        message = await service.send_message("alice_bob", "alice", "hi", db_session)
        with pytest.raises(UnauthorizedError):
            await service.edit_message("alice_bob", message.id, "bob", "changed", db_session)

    @pytest.mark.asyncio
    async def test_edit_to_empty_rejected(self, service, match, db_session):
        message = await service.send_message("alice_bob", "alice", "hi", db_session)
        with pytest.raises(EmptyMessageError):
            await service.edit_message("alice_bob", message.id, "alice", "", db_session)

    @pytest.mark.asyncio
    async def test_delete_tombstones_and_is_idempotent(self, service, match, db_session):
        message = await service.send_message(
            "alice_bob", "alice", "oops", db_session, image_url=PHOTO_URL
        )
        deleted = await service.delete_message_for_everyone(
            "alice_bob", message.id, "alice", db_session
        )
        again = await service.delete_message_for_everyone(
            "alice_bob", message.id, "alice", db_session
        )

        assert deleted.deleted is True
        assert deleted.text == DELETED_PLACEHOLDER
        assert deleted.image_url is None
        assert again.deleted_at == deleted.deleted_at
        assert (await _reload_match(db_session)).last_message == DELETED_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_deleted_message_cannot_be_edited(self, service, match, db_session):
        message = await service.send_message("alice_bob", "alice", "oops", db_session)
        await service.delete_message_for_everyone("alice_bob", message.id, "alice", db_session)
        with pytest.raises(ValidationError):
            await service.edit_message("alice_bob", message.id, "alice", "fixed", db_session)

    @pytest.mark.asyncio
    async def test_only_sender_can_delete(self, service, match, db_session):
        message = await service.send_message("alice_bob", "alice", "hi", db_session)
        with pytest.raises(UnauthorizedError):
            await service.delete_message_for_everyone("alice_bob", message.id, "bob", db_session)


class TestReadState:

    @pytest.mark.asyncio
    async def test_mark_read_flips_incoming_only(self, service, match, db_session):
        await service.send_message("alice_bob", "alice", "one", db_session)
        await service.send_message("alice_bob", "alice", "two", db_session)
        await service.send_message("alice_bob", "bob", "three", db_session)

        outcome = await service.mark_messages_as_read("alice_bob", "bob", db_session)

        assert outcome.is_ok and outcome.value == 2
        match = await _reload_match(db_session)
        assert match.unread_count_for("bob") == 0
        assert match.unread_count_for("alice") == 1
        messages = await service.get_messages("alice_bob", "bob", db_session)
        for message in messages:
            await db_session.refresh(message)
        assert {m.text: m.read for m in messages} == {"one": True, "two": True, "three": False}

    @pytest.mark.asyncio
    async def test_mark_read_requires_membership(self, service, match, db_session):
        with pytest.raises(UnauthorizedError):
            await service.mark_messages_as_read("alice_bob", "carol", db_session)

    @pytest.mark.asyncio
    async def test_reconcile_restores_drifted_counter(self, service, match, db_session):
        await service.send_message("alice_bob", "alice", "one", db_session)
        await service.send_message("alice_bob", "alice", "two", db_session)
        await db_session.execute(
            update(Match).where(Match.id == "alice_bob").values(unread_count_b=7)
        )

        assert await service.reconcile_unread_count("alice_bob", "bob", db_session) == 2
        assert (await _reload_match(db_session)).unread_count_for("bob") == 2

    @pytest.mark.asyncio
    async def test_unread_total_across_active_matches(
        self, service, match_service, match, db_session
    ):
        await match_service.create_or_reactivate_match("bob", "carol", db_session)
        await service.send_message("alice_bob", "alice", "hi bob", db_session)
        await service.send_message("bob_carol", "carol", "hey", db_session)
        await service.send_message("bob_carol", "carol", "you there?", db_session)

        assert await service.get_unread_total("bob", db_session) == 3

        await match_service.unmatch("bob_carol", "bob", db_session)
        assert await service.get_unread_total("bob", db_session) == 1

    @pytest.mark.asyncio
    async def test_get_messages_with_limit_keeps_chronological_order(
        self, service, match, db_session
    ):
        for text in ("a", "b", "c"):
            await service.send_message("alice_bob", "alice", text, db_session)

        latest = await service.get_messages("alice_bob", "bob", db_session, limit=2)
        assert [m.text for m in latest] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_counter_failure_is_soft_and_reconcile_repairs_it(
        self, service, match, db_session, monkeypatch
    ):
        await service.send_message("alice_bob", "alice", "one", db_session)
        await service.send_message("alice_bob", "alice", "two", db_session)

        real_execute = db_session.execute

        async def counter_update_fails(statement, *args, **kwargs):
            if isinstance(statement, Update) and statement.table is Match.__table__:
                raise OperationalError("UPDATE matches", {}, Exception("database is locked"))
            return await real_execute(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "execute", counter_update_fails)
        outcome = await service.mark_messages_as_read("alice_bob", "bob", db_session)
        monkeypatch.undo()

        assert outcome.is_soft_failure
        assert outcome.error == "mark_read_partial:counter"
        flags = (
            await db_session.execute(
                select(Message.read).where(Message.match_id == "alice_bob")
            )
        ).scalars().all()
        assert flags == [True, True]
        assert (await _reload_match(db_session)).unread_count_for("bob") == 2

        assert await service.reconcile_unread_count("alice_bob", "bob", db_session) == 0
        assert (await _reload_match(db_session)).unread_count_for("bob") == 0


class TestConcurrentSends:
    """Separate sessions on a file database, so each send runs in its own
    transaction on its own connection."""

    @pytest.fixture
    async def file_session_factory(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        configure_sqlite(engine, immediate=True)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_each_send_adds_one_to_the_counter(self, rate_limiter, file_session_factory):
        match_service = MatchService()
        service = ConversationService(rate_limiter, match_service=match_service)
        async with file_session_factory() as session:
            await create_user(session, "alice")
            await create_user(session, "bob")
            await match_service.create_or_reactivate_match("alice", "bob", session)
            await session.commit()

        async def send(n):
            async with file_session_factory() as session:
                await service.send_message("alice_bob", "alice", f"message {n}", session)
                await session.commit()

        await asyncio.gather(*(send(n) for n in range(10)))

        async with file_session_factory() as session:
            match = await session.get(Match, "alice_bob")
            assert match.unread_count_for("bob") == 10
            assert match.unread_count_for("alice") == 0
            stored = (
                await session.execute(select(func.count()).select_from(Message))
            ).scalar_one()
            assert stored == 10
            assert await service.get_unread_total("bob", session) == 10
