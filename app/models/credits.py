"""
Frinder Ledger — UserCredits and UserSubscription models.

Both are one-row-per-user documents.  Balances are only ever changed with
additive or guarded SQL updates (see ``CreditService``) so they never drop
below zero under concurrent writers.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class UserCredits(Base):
    __tablename__ = "user_credits"
    __table_args__ = (
        CheckConstraint("super_likes >= 0", name="ck_credits_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    super_likes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_super_likes_purchased: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    swipe_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_swipe_count_reset: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_free_super_like: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<UserCredits {self.user_id} super_likes={self.super_likes}>"


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"
    __table_args__ = (
        CheckConstraint(
            "pro_super_likes_remaining >= 0", name="ck_pro_allotment_non_negative"
        ),
    )

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_ad_free: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    premium_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    ad_free_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Entitlements ───────────────────────────────────────────────
    unlimited_super_likes: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    can_see_who_liked_you: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    unlimited_rewinds: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    priority_in_discovery: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    advanced_filters: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # ── Billing membership ─────────────────────────────────────────
    membership_id: Mapped[str | None] = mapped_column(
        String, nullable=True, index=True
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    # ── Pro super-like allotment ───────────────────────────────────
    pro_super_likes_remaining: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    pro_super_likes_reset_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_pro_super_like_used: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<UserSubscription {self.user_id} premium={self.is_premium}>"
