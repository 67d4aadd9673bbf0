"""
Frinder Ledger — Credit & Subscription Ledger

Tracks the consumable super-like balance and premium entitlements per user.

Every balance change is a single-row SQL update that is either additive
(``super_likes = super_likes + n``) or guarded (``... WHERE super_likes >= 1``),
so concurrent writers can neither lose an increment nor drive a balance
below zero.  Rows are created lazily on first touch.

Super-like consumption precedence:
  1. Pro allotment — premium members, at most one per UTC day, refilled to
     ``PRO_SUPER_LIKES_PER_MONTH`` every ``PRO_SUPER_LIKE_RESET_DAYS``.
  2. ``unlimited_super_likes`` entitlement — no balance is touched.
  3. Purchased / free balance.
  4. Nothing left — a soft failure the caller decides how to treat.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Literal

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.errors import NotFoundError, ValidationError
from app.models.credits import UserCredits, UserSubscription
from app.utils.clock import ensure_utc, utcnow
from app.utils.outcome import Outcome

logger = structlog.get_logger("frinder.credit_service")

SuperLikeSource = Literal["pro", "unlimited", "credits"]

ENTITLEMENT_FLAGS: tuple[str, ...] = (
    "unlimited_super_likes",
    "can_see_who_liked_you",
    "unlimited_rewinds",
    "priority_in_discovery",
    "advanced_filters",
)


class CreditService:
    """Owns every mutation of ``user_credits`` and the pro allotment."""

    def __init__(self) -> None:
        settings = get_settings()
        self.free_interval = timedelta(hours=settings.FREE_SUPER_LIKE_INTERVAL_HOURS)
        self.pro_per_month: int = settings.PRO_SUPER_LIKES_PER_MONTH
        self.pro_reset_interval = timedelta(days=settings.PRO_SUPER_LIKE_RESET_DAYS)
        self.swipes_per_ad: int = settings.SWIPES_PER_AD
        self.swipe_reset_interval = timedelta(hours=settings.SWIPE_COUNT_RESET_HOURS)

    # ── Row access ────────────────────────────────────────────────────────

    async def get_credits(self, user_id: str, db_session: AsyncSession) -> UserCredits:
        """Return the user's credit row, creating an empty one if absent."""
        return await self._ensure_row(UserCredits, user_id, db_session)

    async def get_subscription(
        self, user_id: str, db_session: AsyncSession
    ) -> UserSubscription:
        """Return the user's subscription row, creating a free-tier one if absent."""
        return await self._ensure_row(UserSubscription, user_id, db_session)

    async def has_entitlement(
        self, user_id: str, flag: str, db_session: AsyncSession
    ) -> bool:
        if flag not in ENTITLEMENT_FLAGS:
            raise ValueError(f"Unknown entitlement {flag!r}")
        sub = await self._reload(UserSubscription, user_id, db_session)
        return bool(sub is not None and getattr(sub, flag))

    # ── Super-like balance ────────────────────────────────────────────────

    async def consume_super_like(
        self, user_id: str, db_session: AsyncSession
    ) -> Outcome[SuperLikeSource]:
        """Spend one super-like following the precedence in the module doc.

        Returns a soft failure (``"super_likes_exhausted"``) rather than
        raising when nothing is left to spend.
        """
        log = logger.bind(user_id=user_id)
        sub = await self.get_subscription(user_id, db_session)
        await self.get_credits(user_id, db_session)
        now = utcnow()

        if sub.is_premium:
            await self._refresh_pro_allotment(user_id, db_session)
            start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
            result = await db_session.execute(
                update(UserSubscription)
                .where(
                    UserSubscription.user_id == user_id,
                    UserSubscription.pro_super_likes_remaining >= 1,
                    or_(
                        UserSubscription.last_pro_super_like_used.is_(None),
                        UserSubscription.last_pro_super_like_used < start_of_day,
                    ),
                )
                .values(
                    pro_super_likes_remaining=UserSubscription.pro_super_likes_remaining - 1,
                    last_pro_super_like_used=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                log.info("super_like_consumed", source="pro")
                return Outcome.ok("pro")

        if sub.unlimited_super_likes:
            log.info("super_like_consumed", source="unlimited")
            return Outcome.ok("unlimited")

        result = await db_session.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id, UserCredits.super_likes >= 1)
            .values(super_likes=UserCredits.super_likes - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            log.info("super_like_consumed", source="credits")
            return Outcome.ok("credits")

        log.warning("super_like_balance_exhausted")
        return Outcome.soft_failure("super_likes_exhausted")

    async def grant_super_like(
        self, user_id: str, db_session: AsyncSession, amount: int = 1
    ) -> None:
        """Additively credit ``amount`` super-likes to ``user_id``."""
        if amount <= 0:
            raise ValidationError("Grant amount must be positive.", amount=amount)
        await self.get_credits(user_id, db_session)
        await db_session.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id)
            .values(super_likes=UserCredits.super_likes + amount)
            .execution_options(synchronize_session=False)
        )
        logger.info("super_like_granted", user_id=user_id, amount=amount)

    async def add_purchased_super_likes(
        self, user_id: str, amount: int, db_session: AsyncSession
    ) -> UserCredits:
        """Apply a completed bulk purchase."""
        if amount <= 0:
            raise ValidationError("Purchase amount must be positive.", amount=amount)
        await self.get_credits(user_id, db_session)
        await db_session.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id)
            .values(
                super_likes=UserCredits.super_likes + amount,
                total_super_likes_purchased=UserCredits.total_super_likes_purchased + amount,
            )
            .execution_options(synchronize_session=False)
        )
        logger.info("super_likes_purchased", user_id=user_id, amount=amount)
        return await self._reload(UserCredits, user_id, db_session)

    async def claim_free_super_like(
        self, user_id: str, db_session: AsyncSession
    ) -> bool:
        """Grant the periodic free super-like if the interval has elapsed."""
        await self.get_credits(user_id, db_session)
        now = utcnow()
        result = await db_session.execute(
            update(UserCredits)
            .where(
                UserCredits.user_id == user_id,
                or_(
                    UserCredits.last_free_super_like.is_(None),
                    UserCredits.last_free_super_like <= now - self.free_interval,
                ),
            )
            .values(
                super_likes=UserCredits.super_likes + 1,
                last_free_super_like=now,
            )
            .execution_options(synchronize_session=False)
        )
        granted = result.rowcount == 1
        logger.info("free_super_like_claim", user_id=user_id, granted=granted)
        return granted

    # ── Ad gating ─────────────────────────────────────────────────────────

    async def register_swipe(self, user_id: str, db_session: AsyncSession) -> bool:
        """Count one swipe; return True when an ad should be shown."""
        await self.get_credits(user_id, db_session)
        now = utcnow()

        await db_session.execute(
            update(UserCredits)
            .where(
                UserCredits.user_id == user_id,
                or_(
                    UserCredits.last_swipe_count_reset.is_(None),
                    UserCredits.last_swipe_count_reset <= now - self.swipe_reset_interval,
                ),
            )
            .values(swipe_count=0, last_swipe_count_reset=now)
            .execution_options(synchronize_session=False)
        )
        await db_session.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id)
            .values(swipe_count=UserCredits.swipe_count + 1)
            .execution_options(synchronize_session=False)
        )

        count = (
            await db_session.execute(
                select(UserCredits.swipe_count).where(UserCredits.user_id == user_id)
            )
        ).scalar_one()

        if count % self.swipes_per_ad != 0:
            return False
        return not await self.is_ad_free(user_id, db_session)

    async def is_ad_free(self, user_id: str, db_session: AsyncSession) -> bool:
        sub = await self._reload(UserSubscription, user_id, db_session)
        if sub is None or not sub.is_ad_free:
            return False
        expires = ensure_utc(sub.ad_free_expires_at)
        return expires is None or expires > utcnow()

    # ── Billing entitlements ──────────────────────────────────────────────

    async def activate_membership(
        self, user_id: str, membership_id: str, db_session: AsyncSession
    ) -> UserSubscription:
        """Turn on every premium entitlement for ``user_id``."""
        await self.get_subscription(user_id, db_session)
        now = utcnow()
        await db_session.execute(
            update(UserSubscription)
            .where(UserSubscription.user_id == user_id)
            .values(
                membership_id=membership_id,
                is_premium=True,
                premium_expires_at=None,
                is_ad_free=True,
                cancel_at_period_end=False,
                pro_super_likes_remaining=self.pro_per_month,
                pro_super_likes_reset_at=now + self.pro_reset_interval,
                **{flag: True for flag in ENTITLEMENT_FLAGS},
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "membership_activated", user_id=user_id, membership_id=membership_id
        )
        return await self._reload(UserSubscription, user_id, db_session)

    async def cancel_membership(
        self, membership_id: str, db_session: AsyncSession
    ) -> UserSubscription | None:
        """Clear every entitlement of the user holding ``membership_id``.

        Returns ``None`` (and logs) when no user holds the membership.
        """
        sub = (
            await db_session.execute(
                select(UserSubscription).where(
                    UserSubscription.membership_id == membership_id
                )
            )
        ).scalar_one_or_none()

        if sub is None:
            logger.warning("membership_cancel_unknown", membership_id=membership_id)
            return None

        await db_session.execute(
            update(UserSubscription)
            .where(UserSubscription.user_id == sub.user_id)
            .values(
                membership_id=None,
                is_premium=False,
                premium_expires_at=utcnow(),
                is_ad_free=False,
                cancel_at_period_end=False,
                pro_super_likes_remaining=0,
                **{flag: False for flag in ENTITLEMENT_FLAGS},
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "membership_cancelled", user_id=sub.user_id, membership_id=membership_id
        )
        return await self._reload(UserSubscription, sub.user_id, db_session)

    async def mark_cancel_at_period_end(
        self, user_id: str, db_session: AsyncSession
    ) -> UserSubscription:
        sub = await self.get_subscription(user_id, db_session)
        sub.cancel_at_period_end = True
        await db_session.flush()
        logger.info("membership_cancel_scheduled", user_id=user_id)
        return sub

    # ── Private helpers ──────────────────────────────────────────────────

    async def _refresh_pro_allotment(
        self, user_id: str, db_session: AsyncSession
    ) -> None:
        now = utcnow()
        await db_session.execute(
            update(UserSubscription)
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.is_premium.is_(True),
                or_(
                    UserSubscription.pro_super_likes_reset_at.is_(None),
                    UserSubscription.pro_super_likes_reset_at <= now,
                ),
            )
            .values(
                pro_super_likes_remaining=self.pro_per_month,
                pro_super_likes_reset_at=now + self.pro_reset_interval,
            )
            .execution_options(synchronize_session=False)
        )

    async def _ensure_row(self, model, user_id: str, db_session: AsyncSession):
        row = await self._reload(model, user_id, db_session)
        if row is not None:
            return row

        try:
            async with db_session.begin_nested():
                db_session.add(model(user_id=user_id))
        except IntegrityError:
            # Either a concurrent creator won the race or the user is unknown.
            logger.debug("ledger_row_insert_conflict", model=model.__name__, user_id=user_id)

        row = await self._reload(model, user_id, db_session)
        if row is None:
            raise NotFoundError("User", user_id)
        return row

    @staticmethod
    async def _reload(model, user_id: str, db_session: AsyncSession):
        return await db_session.get(model, user_id, populate_existing=True)
