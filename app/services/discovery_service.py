"""
Frinder Ledger — Discovery Feed Builder

Candidate selection for the swipe deck.

Exclusion set for a viewer::

    {viewer}
      ∪ partners of active matches
      ∪ (right/superlike targets − partners of unmatched matches)

Left swipes are deliberately absent from the exclusion set so passed users
come back around, and unmatching returns a partner to the deck even though
the viewer once liked them.

Ordering, most significant first:
  1. ``priority_in_discovery`` subscribers.
  2. Number of interests shared with the viewer.
  3. Locality: same city, then same country, then everyone else.
"""

from __future__ import annotations

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.errors import NotFoundError
from app.models.credits import UserSubscription
from app.models.match import POSITIVE_DIRECTIONS, Match, Swipe
from app.models.user import User

logger = structlog.get_logger("frinder.discovery_service")

_OPPOSITE_GENDER = {"male": "female", "female": "male"}


class DiscoveryService:
    """Builds the discovery deck for a viewer."""

    def __init__(self, fetch_limit: int | None = None) -> None:
        self.fetch_limit = fetch_limit or get_settings().FEED_FETCH_LIMIT

    async def get_candidates(
        self, user_id: str, db_session: AsyncSession, limit: int = 20
    ) -> list[User]:
        """Return up to ``limit`` profiles the viewer may swipe on."""
        viewer = await db_session.get(User, user_id)
        if viewer is None:
            raise NotFoundError("User", user_id)

        excluded = await self.excluded_ids(user_id, db_session)

        stmt = select(User).where(
            User.is_profile_complete.is_(True),
            User.is_banned.is_(False),
            User.id.not_in(sorted(excluded)),
        )
        opposite = _OPPOSITE_GENDER.get((viewer.gender or "").lower())
        if opposite:
            stmt = stmt.where(User.gender == opposite)
        stmt = stmt.order_by(User.created_at.desc()).limit(self.fetch_limit)

        pool = list((await db_session.execute(stmt)).scalars().all())
        if not pool:
            logger.info("discovery_empty", user_id=user_id, excluded=len(excluded))
            return []

        boosted = await self._priority_ids([u.id for u in pool], db_session)
        viewer_interests = {i.lower() for i in viewer.interests or []}

        def rank(candidate: User) -> tuple[int, int, int]:
            shared = len(
                viewer_interests & {i.lower() for i in candidate.interests or []}
            )
            if viewer.city and candidate.city == viewer.city:
                locality = 0
            elif viewer.country and candidate.country == viewer.country:
                locality = 1
            else:
                locality = 2
            return (0 if candidate.id in boosted else 1, -shared, locality)

        pool.sort(key=rank)
        candidates = pool[:limit]
        logger.info(
            "discovery_built",
            user_id=user_id,
            pool=len(pool),
            returned=len(candidates),
            excluded=len(excluded),
        )
        return candidates

    async def excluded_ids(self, user_id: str, db_session: AsyncSession) -> set[str]:
        """Users that must not appear in ``user_id``'s deck."""
        rows = await db_session.execute(
            select(Match.user_a_id, Match.user_b_id, Match.unmatched).where(
                or_(Match.user_a_id == user_id, Match.user_b_id == user_id)
            )
        )
        active: set[str] = set()
        unmatched: set[str] = set()
        for a, b, is_unmatched in rows.all():
            partner = b if a == user_id else a
            (unmatched if is_unmatched else active).add(partner)

        liked = set(
            (
                await db_session.execute(
                    select(Swipe.target_id).where(
                        Swipe.actor_id == user_id,
                        Swipe.direction.in_(POSITIVE_DIRECTIONS),
                    )
                )
            ).scalars().all()
        )

        return {user_id} | active | (liked - unmatched)

    @staticmethod
    async def _priority_ids(user_ids: list[str], db_session: AsyncSession) -> set[str]:
        rows = await db_session.execute(
            select(UserSubscription.user_id).where(
                UserSubscription.user_id.in_(user_ids),
                UserSubscription.priority_in_discovery.is_(True),
            )
        )
        return set(rows.scalars().all())
