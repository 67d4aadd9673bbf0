"""
Frinder Ledger — Swipe Ledger

Records one decision per ``(actor, target)`` pair and drives match
formation from it:

  1. Admission check under ``superlike`` or ``swipe``.  A rejection raises
     :class:`RateLimitedError` before anything is written.
  2. Upsert the Swipe keyed ``(actor_id, target_id)``: re-swiping the same
     target overwrites the previous direction.
  3. Branch on direction:
       superlike — spend one of the actor's super-likes, forward one to the
                   target, create/reactivate the Match with the actor as
                   initiator and record a SuperLikeEvent.
       right     — if the reverse swipe is right/superlike, create or
                   reactivate the Match keyed by the sorted pair.
       left      — ledger write only.

Steps 2–3 run inside one savepoint.  A storage failure rolls the whole
swipe back (no credit moves, no superlike is recorded), is logged, and is
reported as ``is_match=False`` so the client keeps swiping.

Ad-gating runs after the savepoint and is best-effort.  Notifications are
not sent here: they come back on ``SwipeResult.notifications`` and the caller
hands them to :meth:`SwipeService.dispatch_notifications` once its transaction
has committed, so a rolled-back swipe never notifies anyone.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.errors import NotFoundError, UnauthorizedError, ValidationError
from app.models.match import (
    POSITIVE_DIRECTIONS,
    SWIPE_DIRECTIONS,
    Match,
    SuperLikeEvent,
    Swipe,
    is_valid_user_id,
)
from app.models.user import User
from app.services.credit_service import CreditService
from app.services.match_service import MatchService
from app.services.notification_service import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationKind,
    dispatch_safely,
)
from app.services.rate_limiter import RateLimiter
from app.utils.clock import utcnow

logger = structlog.get_logger("frinder.swipe_service")


@dataclass
class SwipeResult:
    is_match: bool
    match_id: str | None = None
    is_super_like: bool = False
    show_ad: bool = False
    warnings: list[str] = field(default_factory=list)
    notifications: list[tuple[str, str, NotificationKind]] = field(default_factory=list)


class SwipeService:
    """Swipe ledger with reciprocity detection.

    Dependencies are injected at construction so that the service can be
    tested with fakes and shared through FastAPI's dependency graph.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        credit_service: CreditService | None = None,
        match_service: MatchService | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.credit_service = credit_service or CreditService()
        self.match_service = match_service or MatchService()
        self.dispatcher: NotificationDispatcher = (
            dispatcher or LoggingNotificationDispatcher()
        )
        self.superlike_requires_credit: bool = get_settings().SUPERLIKE_REQUIRES_CREDIT

    # ── Public API ────────────────────────────────────────────────────────

    async def record_swipe(
        self,
        actor_id: str,
        target_id: str,
        direction: str,
        db_session: AsyncSession,
    ) -> SwipeResult:
        """Record ``actor_id``'s decision about ``target_id``.

        Raises
        ------
        ValidationError
            Unknown direction, a self-swipe, or (when
            ``SUPERLIKE_REQUIRES_CREDIT`` is on) a super-like with nothing
            left to spend.
        RateLimitedError
            The actor exceeded the swipe or superlike limit.
        """
        if direction not in SWIPE_DIRECTIONS:
            raise ValidationError(
                f"Unknown swipe direction {direction!r}.", direction=direction
            )
        if actor_id == target_id:
            raise ValidationError("Users cannot swipe on themselves.")
        if not is_valid_user_id(target_id):
            raise ValidationError("Malformed target id.", target_id=target_id)

        is_super_like = direction == "superlike"
        await self.rate_limiter.check(
            actor_id, "superlike" if is_super_like else "swipe"
        )

        log = logger.bind(actor_id=actor_id, target_id=target_id, direction=direction)
        result = SwipeResult(is_match=False)
        events: list[tuple[str, str, NotificationKind]] = []

        try:
            async with db_session.begin_nested():
                await self._upsert_swipe(actor_id, target_id, direction, db_session)

                if is_super_like:
                    await self._apply_super_like(actor_id, target_id, result, db_session)
                    events.append((target_id, actor_id, "superlike"))
                elif direction == "right":
                    reverse = await db_session.get(
                        Swipe, (target_id, actor_id), populate_existing=True
                    )
                    if reverse is not None and reverse.direction in POSITIVE_DIRECTIONS:
                        outcome = await self.match_service.create_or_reactivate_match(
                            actor_id, target_id, db_session
                        )
                        result.is_match = True
                        result.match_id = outcome.match_id
                        events.append((target_id, actor_id, "match"))
                        events.append((actor_id, target_id, "match"))
                    else:
                        events.append((target_id, actor_id, "like"))
        except SQLAlchemyError as exc:
            log.error("swipe_failed", error=str(exc))
            return SwipeResult(is_match=False, warnings=["swipe_failed"])

        log.info(
            "swipe_recorded",
            is_match=result.is_match,
            match_id=result.match_id,
        )

        try:
            async with db_session.begin_nested():
                result.show_ad = await self.credit_service.register_swipe(
                    actor_id, db_session
                )
        except SQLAlchemyError as exc:
            log.warning("swipe_counter_failed", error=str(exc))
            result.warnings.append("swipe_counter_failed")

        result.notifications = events
        return result

    async def dispatch_notifications(
        self, events: list[tuple[str, str, NotificationKind]]
    ) -> list[str]:
        """Send the notifications of a committed swipe.

        Never raises; returns the soft-failure codes of the sends that failed.
        """
        failures: list[str] = []
        for to_user_id, from_user_id, kind in events:
            outcome = await dispatch_safely(self.dispatcher, to_user_id, from_user_id, kind)
            if outcome.is_soft_failure:
                failures.append(outcome.error)
        if failures:
            logger.warning("swipe_notifications_failed", failures=failures)
        return failures

    async def get_swipe(
        self, actor_id: str, target_id: str, db_session: AsyncSession
    ) -> Swipe | None:
        return await db_session.get(Swipe, (actor_id, target_id), populate_existing=True)

    async def get_likes_received(
        self, user_id: str, db_session: AsyncSession
    ) -> list[dict]:
        """Users who liked ``user_id`` and are not (actively) matched with them.

        Gated by the ``can_see_who_liked_you`` entitlement.
        """
        if not await self.credit_service.has_entitlement(
            user_id, "can_see_who_liked_you", db_session
        ):
            raise UnauthorizedError(
                "Seeing who liked you requires a premium subscription."
            )

        active_partners = await self._active_partner_ids(user_id, db_session)
        rows = await db_session.execute(
            select(Swipe, User)
            .join(User, User.id == Swipe.actor_id)
            .where(
                Swipe.target_id == user_id,
                Swipe.direction.in_(POSITIVE_DIRECTIONS),
            )
            .order_by(Swipe.updated_at.desc())
        )
        likes = [
            {
                "user": user.snapshot(),
                "direction": swipe.direction,
                "swiped_at": swipe.updated_at,
            }
            for swipe, user in rows.all()
            if swipe.actor_id not in active_partners
        ]
        logger.info("likes_received_listed", user_id=user_id, count=len(likes))
        return likes

    async def get_super_likes_received(
        self, user_id: str, db_session: AsyncSession, unseen_only: bool = False
    ) -> list[SuperLikeEvent]:
        stmt = select(SuperLikeEvent).where(SuperLikeEvent.to_user_id == user_id)
        if unseen_only:
            stmt = stmt.where(SuperLikeEvent.seen.is_(False))
        stmt = stmt.order_by(SuperLikeEvent.created_at.desc())
        return list((await db_session.execute(stmt)).scalars().all())

    async def mark_super_likes_seen(
        self, user_id: str, db_session: AsyncSession
    ) -> int:
        events = await self.get_super_likes_received(user_id, db_session, unseen_only=True)
        for event in events:
            event.seen = True
        await db_session.flush()
        return len(events)

    async def rewind_last_swipe(
        self, actor_id: str, db_session: AsyncSession
    ) -> Swipe:
        """Undo the actor's most recent pass.

        Only ``left`` swipes can be rewound; positive swipes may already have
        produced a match.  Gated by the ``unlimited_rewinds`` entitlement.
        """
        if not await self.credit_service.has_entitlement(
            actor_id, "unlimited_rewinds", db_session
        ):
            raise UnauthorizedError("Rewinds require a premium subscription.")

        last = (
            await db_session.execute(
                select(Swipe)
                .where(Swipe.actor_id == actor_id)
                .order_by(Swipe.updated_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        if last is None:
            raise NotFoundError("Swipe", actor_id)
        if last.direction != "left":
            raise ValidationError("Only passes can be rewound.", direction=last.direction)

        await db_session.delete(last)
        await db_session.flush()
        logger.info("swipe_rewound", actor_id=actor_id, target_id=last.target_id)
        return last

    # ── Private helpers ──────────────────────────────────────────────────

    async def _apply_super_like(
        self,
        actor_id: str,
        target_id: str,
        result: SwipeResult,
        db_session: AsyncSession,
    ) -> None:
        consumed = await self.credit_service.consume_super_like(actor_id, db_session)
        if consumed.is_soft_failure:
            if self.superlike_requires_credit:
                raise ValidationError(
                    "No super-likes left.", reason=consumed.error
                )
            logger.warning(
                "super_like_without_credit", actor_id=actor_id, target_id=target_id
            )
            result.warnings.append(consumed.error)

        await self.credit_service.grant_super_like(target_id, db_session)

        outcome = await self.match_service.create_or_reactivate_match(
            actor_id,
            target_id,
            db_session,
            is_super_like=True,
            super_liked_by=actor_id,
        )
        await self._record_super_like_event(actor_id, target_id, db_session)

        result.is_match = True
        result.is_super_like = True
        result.match_id = outcome.match_id

    @staticmethod
    async def _upsert_swipe(
        actor_id: str, target_id: str, direction: str, db_session: AsyncSession
    ) -> None:
        now = utcnow()
        swipe = await db_session.get(Swipe, (actor_id, target_id), populate_existing=True)
        if swipe is None:
            try:
                async with db_session.begin_nested():
                    db_session.add(
                        Swipe(
                            actor_id=actor_id,
                            target_id=target_id,
                            direction=direction,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                return
            except IntegrityError:
                swipe = await db_session.get(
                    Swipe, (actor_id, target_id), populate_existing=True
                )
                if swipe is None:
                    raise

        swipe.direction = direction
        swipe.updated_at = now
        await db_session.flush()

    @staticmethod
    async def _record_super_like_event(
        actor_id: str, target_id: str, db_session: AsyncSession
    ) -> None:
        now = utcnow()
        event = await db_session.get(SuperLikeEvent, (actor_id, target_id))
        if event is None:
            db_session.add(
                SuperLikeEvent(
                    from_user_id=actor_id, to_user_id=target_id, created_at=now, seen=False
                )
            )
        else:
            event.created_at = now
            event.seen = False
        await db_session.flush()

    @staticmethod
    async def _active_partner_ids(user_id: str, db_session: AsyncSession) -> set[str]:
        rows = await db_session.execute(
            select(Match.user_a_id, Match.user_b_id).where(
                Match.unmatched.is_(False),
                or_(Match.user_a_id == user_id, Match.user_b_id == user_id),
            )
        )
        return {b if a == user_id else a for a, b in rows.all()}
