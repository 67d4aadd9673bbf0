"""
Frinder Ledger — Match Engine

Creates, reactivates and dissolves Match records.

The match id is :func:`app.models.match.match_key` of the two members, so
two simultaneous reciprocal swipes processed on different workers resolve to
the same primary key: whichever insert loses the race hits an
``IntegrityError`` inside its savepoint and falls through to the
existing-row path, which is a no-op for an active match.

Lifecycle:
  absent              → insert with fresh profile snapshots
  present, unmatched  → reactivate in place (same id), refresh snapshots,
                        stamp ``rematched_at``, overwrite super-like metadata
  present, active     → return the id unchanged
  unmatch             → soft-delete (``unmatched=True``); messages survive
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, UnauthorizedError, ValidationError
from app.models.match import Match, is_valid_user_id, match_key
from app.models.user import User
from app.utils.clock import ensure_utc, utcnow
from app.utils.outcome import Outcome

logger = structlog.get_logger("frinder.match_service")


@dataclass(frozen=True)
class MatchOutcome:
    match_id: str
    created: bool = False
    reactivated: bool = False


class MatchService:
    """Match formation and unmatch/rematch lifecycle."""

    # ── Formation ─────────────────────────────────────────────────────────

    async def create_or_reactivate_match(
        self,
        user_a_id: str,
        user_b_id: str,
        db_session: AsyncSession,
        is_super_like: bool = False,
        super_liked_by: str | None = None,
    ) -> MatchOutcome:
        """Ensure exactly one active Match exists for the pair.

        Parameters
        ----------
        user_a_id, user_b_id:
            The two members, in any order.
        db_session:
            Active SQLAlchemy async session.
        is_super_like:
            Whether the triggering event was a super-like.
        super_liked_by:
            The initiator of the super-like; required when
            ``is_super_like`` is True.

        Returns
        -------
        MatchOutcome
            The match id and whether it was freshly created or reactivated.
        """
        if user_a_id == user_b_id:
            raise ValidationError("A user cannot match with themselves.")
        if is_super_like and super_liked_by not in (user_a_id, user_b_id):
            raise ValidationError(
                "A super-like match must record one of its members as initiator."
            )
        if not (is_valid_user_id(user_a_id) and is_valid_user_id(user_b_id)):
            raise ValidationError("Malformed user id.", user_ids=[user_a_id, user_b_id])

        mid = match_key(user_a_id, user_b_id)
        pair = tuple(sorted((user_a_id, user_b_id)))
        log = logger.bind(match_id=mid, is_super_like=is_super_like)

        existing = await self._load(mid, db_session)
        if existing is None:
            profiles = await self._snapshot_profiles((user_a_id, user_b_id), db_session)
            first, second = sorted((user_a_id, user_b_id))
            try:
                async with db_session.begin_nested():
                    db_session.add(
                        Match(
                            id=mid,
                            user_a_id=first,
                            user_b_id=second,
                            user_profiles=profiles,
                            created_at=utcnow(),
                            unmatched=False,
                            is_super_like=is_super_like,
                            super_liked_by=super_liked_by if is_super_like else None,
                            unread_count_a=0,
                            unread_count_b=0,
                        )
                    )
            except IntegrityError:
                log.info("match_insert_race_resolved")
                existing = await self._load(mid, db_session)
                if existing is None:
                    raise
            else:
                log.info("match_created")
                return MatchOutcome(match_id=mid, created=True)

        if tuple(existing.member_ids) != pair:
            log.error("match_key_collision", members=list(existing.member_ids))
            raise ValidationError(
                "Match key belongs to a different pair.", match_id=mid
            )

        if existing.unmatched:
            existing.unmatched = False
            existing.unmatched_at = None
            existing.unmatched_by = None
            existing.rematched_at = utcnow()
            existing.user_profiles = await self._snapshot_profiles(
                existing.member_ids, db_session
            )
            existing.is_super_like = is_super_like
            existing.super_liked_by = super_liked_by if is_super_like else None
            await db_session.flush()
            log.info("match_reactivated")
            return MatchOutcome(match_id=mid, reactivated=True)

        log.debug("match_already_active")
        return MatchOutcome(match_id=mid)

    # ── Dissolution ───────────────────────────────────────────────────────

    async def unmatch(
        self, match_id: str, user_id: str, db_session: AsyncSession
    ) -> Match:
        """Soft-delete a match on behalf of one of its members.

        Messages are left untouched so the history stays readable.
        Unmatching an already-unmatched match is a no-op.
        """
        match = await self.get_match(match_id, user_id, db_session)
        if match.unmatched:
            return match

        match.unmatched = True
        match.unmatched_at = utcnow()
        match.unmatched_by = user_id
        await db_session.flush()

        logger.info("match_unmatched", match_id=match_id, unmatched_by=user_id)
        return match

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_match(
        self, match_id: str, user_id: str, db_session: AsyncSession
    ) -> Match:
        """Load a match the caller belongs to.

        Raises
        ------
        NotFoundError
            The match does not exist.
        UnauthorizedError
            ``user_id`` is not a member.
        """
        match = await self._load(match_id, db_session)
        if match is None:
            raise NotFoundError("Match", match_id)
        if user_id not in match.member_ids:
            raise UnauthorizedError(
                "Only members of a match can access it.", match_id=match_id
            )
        return match

    async def list_matches(
        self,
        user_id: str,
        db_session: AsyncSession,
        include_unmatched: bool = False,
    ) -> list[Match]:
        """All matches containing ``user_id``, most recent activity first."""
        stmt = select(Match).where(
            or_(Match.user_a_id == user_id, Match.user_b_id == user_id)
        )
        if not include_unmatched:
            stmt = stmt.where(Match.unmatched.is_(False))
        stmt = stmt.execution_options(populate_existing=True)

        matches = list((await db_session.execute(stmt)).scalars().all())
        matches.sort(
            key=lambda m: ensure_utc(m.last_message_at or m.rematched_at or m.created_at),
            reverse=True,
        )
        logger.debug("matches_listed", user_id=user_id, count=len(matches))
        return matches

    # ── Profile cache propagation ─────────────────────────────────────────

    async def propagate_profile_update(
        self, user_id: str, db_session: AsyncSession
    ) -> Outcome[int]:
        """Refresh ``user_id``'s snapshot on every match they belong to.

        Best-effort: a failure is logged and reported as a soft failure,
        never raised, because the profile update itself already succeeded.
        """
        try:
            async with db_session.begin_nested():
                user = await db_session.get(User, user_id)
                if user is None:
                    return Outcome.soft_failure("user_not_found")
                snapshot = user.snapshot()
                matches = await self.list_matches(
                    user_id, db_session, include_unmatched=True
                )
                for match in matches:
                    profiles = dict(match.user_profiles or {})
                    profiles[user_id] = snapshot
                    match.user_profiles = profiles
        except SQLAlchemyError as exc:
            logger.warning(
                "profile_propagation_failed", user_id=user_id, error=str(exc)
            )
            return Outcome.soft_failure("profile_propagation_failed")

        logger.info("profile_propagated", user_id=user_id, matches=len(matches))
        return Outcome.ok(len(matches))

    # ── Private helpers ──────────────────────────────────────────────────

    @staticmethod
    async def _load(match_id: str, db_session: AsyncSession) -> Match | None:
        return await db_session.get(Match, match_id, populate_existing=True)

    @staticmethod
    async def _snapshot_profiles(
        user_ids: tuple[str, str], db_session: AsyncSession
    ) -> dict[str, dict]:
        result = await db_session.execute(select(User).where(User.id.in_(user_ids)))
        return {user.id: user.snapshot() for user in result.scalars().all()}
