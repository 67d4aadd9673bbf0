"""
Frinder Ledger — Conversation Store

Per-match message ledger with denormalised read-state on the Match row.

Sending a message is two writes: the Message insert, then one additive
``UPDATE matches SET unread_count_x = unread_count_x + 1, last_message = ...``.
The increment is computed by the database, so concurrent senders never lose
a count.  Read-marking is the mirror image and runs as two independent
savepoints (flag flip, counter reset); a failure in one is logged and
reported as a soft outcome, and ``reconcile_unread_count`` restores the
counter from the per-message ``read`` flags.
"""

from __future__ import annotations

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import EmptyMessageError, NotFoundError, UnauthorizedError, ValidationError
from app.models.match import Match
from app.models.message import DELETED_PLACEHOLDER, Message
from app.services.match_service import MatchService
from app.services.rate_limiter import RateLimiter
from app.utils.clock import utcnow
from app.utils.outcome import Outcome
from app.utils.sanitizer import sanitize_message, sanitize_url

logger = structlog.get_logger("frinder.conversation_service")

IMAGE_PREVIEW = "📷 Photo"


class ConversationService:
    """Messages, previews and unread counters for a match."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        match_service: MatchService | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.match_service = match_service or MatchService()

    # ── Sending ───────────────────────────────────────────────────────────

    async def send_message(
        self,
        match_id: str,
        sender_id: str,
        text: str,
        db_session: AsyncSession,
        image_url: str | None = None,
        reply_to_id: str | None = None,
    ) -> Message:
        """Append a message to an active match.

        Raises
        ------
        RateLimitedError
            Sender exceeded the ``message`` limit.
        EmptyMessageError
            Neither text nor a valid image URL survived sanitisation.
        NotFoundError
            Unknown match, or a quoted message that is not in this match.
        ValidationError
            The match has been unmatched.
        UnauthorizedError
            Sender is not a member of the match.
        """
        await self.rate_limiter.check(sender_id, "message")

        clean_text = sanitize_message(text)
        clean_image = sanitize_url(image_url) if image_url else ""
        if not clean_text and not clean_image:
            raise EmptyMessageError()

        match = await db_session.get(Match, match_id, populate_existing=True)
        if match is None:
            raise NotFoundError("Match", match_id)
        if match.unmatched:
            raise ValidationError(
                "Cannot send messages in an inactive match.", match_id=match_id
            )
        if sender_id not in match.member_ids:
            raise UnauthorizedError(
                "Only members of a match can send messages.", match_id=match_id
            )

        now = utcnow()
        message = Message(
            match_id=match_id,
            sender_id=sender_id,
            text=clean_text,
            message_type="image" if clean_image else "text",
            image_url=clean_image or None,
            read=False,
            edited=False,
            deleted=False,
            created_at=now,
        )

        if reply_to_id:
            quoted = await db_session.get(Message, reply_to_id)
            if quoted is None or quoted.match_id != match_id:
                raise NotFoundError("Message", reply_to_id)
            message.reply_to_id = quoted.id
            message.reply_to_text = quoted.text
            message.reply_to_sender_id = quoted.sender_id

        db_session.add(message)
        await db_session.flush()

        recipient_id = match.other_member(sender_id)
        counter = self._counter_column(match, recipient_id)
        await db_session.execute(
            update(Match)
            .where(Match.id == match_id)
            .values(
                {
                    counter: counter + 1,
                    Match.last_message: clean_text or IMAGE_PREVIEW,
                    Match.last_message_at: now,
                    Match.last_message_sender_id: sender_id,
                }
            )
            .execution_options(synchronize_session=False)
        )

        logger.info(
            "message_sent",
            match_id=match_id,
            message_id=message.id,
            sender_id=sender_id,
            message_type=message.message_type,
        )
        return message

    # ── Editing ───────────────────────────────────────────────────────────

    async def edit_message(
        self,
        match_id: str,
        message_id: str,
        sender_id: str,
        new_text: str,
        db_session: AsyncSession,
    ) -> Message:
        """Replace the text of one of the sender's own messages."""
        match, message = await self._load_own_message(
            match_id, message_id, sender_id, db_session
        )
        if message.deleted:
            raise ValidationError(
                "Deleted messages cannot be edited.", message_id=message_id
            )

        clean_text = sanitize_message(new_text)
        if not clean_text and not message.image_url:
            raise EmptyMessageError()

        message.text = clean_text
        message.edited = True
        message.edited_at = utcnow()
        await db_session.flush()
        await self._refresh_preview(match, db_session)

        logger.info("message_edited", match_id=match_id, message_id=message_id)
        return message

    async def delete_message_for_everyone(
        self,
        match_id: str,
        message_id: str,
        sender_id: str,
        db_session: AsyncSession,
    ) -> Message:
        """Tombstone one of the sender's own messages.

        The row stays so replies quoting it keep their anchor.
        """
        match, message = await self._load_own_message(
            match_id, message_id, sender_id, db_session
        )
        if message.deleted:
            return message

        message.deleted = True
        message.deleted_at = utcnow()
        message.text = DELETED_PLACEHOLDER
        message.image_url = None
        await db_session.flush()
        await self._refresh_preview(match, db_session)

        logger.info("message_deleted", match_id=match_id, message_id=message_id)
        return message

    # ── Read-state ────────────────────────────────────────────────────────

    async def mark_messages_as_read(
        self, match_id: str, user_id: str, db_session: AsyncSession
    ) -> Outcome[int]:
        """Flip ``read`` on incoming messages and zero the reader's counter.

        Returns the number of messages flipped, or a soft failure naming the
        step that did not apply.
        """
        match = await self.match_service.get_match(match_id, user_id, db_session)
        log = logger.bind(match_id=match_id, user_id=user_id)
        failures: list[str] = []
        flipped = 0

        try:
            async with db_session.begin_nested():
                result = await db_session.execute(
                    update(Message)
                    .where(
                        Message.match_id == match_id,
                        Message.sender_id != user_id,
                        Message.read.is_(False),
                    )
                    .values(read=True)
                    .execution_options(synchronize_session=False)
                )
                flipped = result.rowcount or 0
        except SQLAlchemyError as exc:
            log.warning("mark_read_flags_failed", error=str(exc))
            failures.append("flags")

        counter = self._counter_column(match, user_id)
        try:
            async with db_session.begin_nested():
                await db_session.execute(
                    update(Match)
                    .where(Match.id == match_id)
                    .values({counter: 0})
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as exc:
            log.warning("mark_read_counter_failed", error=str(exc))
            failures.append("counter")

        if failures:
            return Outcome.soft_failure("mark_read_partial:" + ",".join(failures))

        log.info("messages_marked_read", flipped=flipped)
        return Outcome.ok(flipped)

    async def reconcile_unread_count(
        self, match_id: str, user_id: str, db_session: AsyncSession
    ) -> int:
        """Recompute ``user_id``'s counter from the per-message read flags."""
        match = await self.match_service.get_match(match_id, user_id, db_session)
        actual = (
            await db_session.execute(
                select(func.count())
                .select_from(Message)
                .where(
                    Message.match_id == match_id,
                    Message.sender_id != user_id,
                    Message.read.is_(False),
                )
            )
        ).scalar_one()

        stored = match.unread_count_for(user_id)
        if stored != actual:
            counter = self._counter_column(match, user_id)
            await db_session.execute(
                update(Match)
                .where(Match.id == match_id)
                .values({counter: actual})
                .execution_options(synchronize_session=False)
            )
            logger.warning(
                "unread_count_reconciled",
                match_id=match_id,
                user_id=user_id,
                stored=stored,
                actual=actual,
            )
        return actual

    async def get_unread_total(self, user_id: str, db_session: AsyncSession) -> int:
        matches = await self.match_service.list_matches(user_id, db_session)
        return sum(m.unread_count_for(user_id) for m in matches)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_messages(
        self,
        match_id: str,
        user_id: str,
        db_session: AsyncSession,
        limit: int | None = None,
    ) -> list[Message]:
        """Messages of a match, oldest first.  Members only.

        With ``limit``, the most recent ``limit`` messages are returned
        (still oldest first).
        """
        await self.match_service.get_match(match_id, user_id, db_session)

        stmt = select(Message).where(Message.match_id == match_id)
        if limit is not None:
            stmt = stmt.order_by(Message.created_at.desc()).limit(limit)
            rows = list((await db_session.execute(stmt)).scalars().all())
            rows.reverse()
            return rows

        stmt = stmt.order_by(Message.created_at.asc())
        return list((await db_session.execute(stmt)).scalars().all())

    # ── Private helpers ──────────────────────────────────────────────────

    @staticmethod
    def _counter_column(match: Match, user_id: str):
        return Match.unread_count_a if user_id == match.user_a_id else Match.unread_count_b

    async def _load_own_message(
        self,
        match_id: str,
        message_id: str,
        sender_id: str,
        db_session: AsyncSession,
    ) -> tuple[Match, Message]:
        match = await self.match_service.get_match(match_id, sender_id, db_session)
        message = await db_session.get(Message, message_id, populate_existing=True)
        if message is None or message.match_id != match_id:
            raise NotFoundError("Message", message_id)
        if message.sender_id != sender_id:
            raise UnauthorizedError(
                "Only the sender can change a message.", message_id=message_id
            )
        return match, message

    @staticmethod
    async def _refresh_preview(match: Match, db_session: AsyncSession) -> None:
        latest = (
            await db_session.execute(
                select(Message)
                .where(Message.match_id == match.id)
                .order_by(Message.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        if latest is None:
            return

        preview = latest.text or (IMAGE_PREVIEW if latest.image_url else "")
        await db_session.execute(
            update(Match)
            .where(Match.id == match.id)
            .values(last_message=preview)
            .execution_options(synchronize_session=False)
        )
