"""
Frinder Ledger — Swipe, Match and SuperLikeEvent models.

Both ledgers are keyed deterministically:

* ``Swipe`` by ``(actor_id, target_id)`` so a changed decision overwrites
  the previous one instead of appending.
* ``Match`` by :func:`match_key` of the two member ids so concurrent
  reciprocal swipes resolve to the same row.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType

SWIPE_DIRECTIONS = ("left", "right", "superlike")
MATCH_KEY_SEPARATOR = "_"
POSITIVE_DIRECTIONS = ("right", "superlike")


def is_valid_user_id(user_id: str) -> bool:
    """Ids may not contain the match-key separator: the pairs (a_b, c) and
    (a, b_c) would otherwise share the key ``a_b_c``."""
    return bool(user_id) and MATCH_KEY_SEPARATOR not in user_id


def match_key(user_a_id: str, user_b_id: str) -> str:
    """Deterministic id for the unordered pair ``{user_a_id, user_b_id}``.

    Raises ``ValueError`` for ids that contain the separator.
    """
    if not (is_valid_user_id(user_a_id) and is_valid_user_id(user_b_id)):
        raise ValueError(
            f"user ids must be non-empty and free of {MATCH_KEY_SEPARATOR!r}"
        )
    first, second = sorted((user_a_id, user_b_id))
    return f"{first}{MATCH_KEY_SEPARATOR}{second}"


class Swipe(Base):
    __tablename__ = "swipes"

    actor_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    target_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    direction: Mapped[str] = mapped_column(
        String, nullable=False, comment="left / right / superlike"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Swipe {self.actor_id} -> {self.target_id} dir={self.direction!r}>"


class Match(Base):
    __tablename__ = "matches"

    id: Mapped[str] = mapped_column(
        String(260), primary_key=True, comment="match_key(user_a_id, user_b_id)"
    )
    user_a_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Lexicographically smaller member id",
    )
    user_b_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_profiles: Mapped[dict] = mapped_column(
        JSONType, default=dict, nullable=False, comment="uid -> profile snapshot"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Lifecycle ──────────────────────────────────────────────────
    unmatched: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    unmatched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    unmatched_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    rematched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # ── Super-like origin ──────────────────────────────────────────
    is_super_like: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    super_liked_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # ── Conversation preview & read-state ──────────────────────────
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_message_sender_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )
    unread_count_a: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unread_count_b: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    @property
    def is_active(self) -> bool:
        return not self.unmatched

    @property
    def member_ids(self) -> tuple[str, str]:
        return (self.user_a_id, self.user_b_id)

    def other_member(self, user_id: str) -> str:
        return self.user_b_id if user_id == self.user_a_id else self.user_a_id

    def unread_count_for(self, user_id: str) -> int:
        if user_id == self.user_a_id:
            return self.unread_count_a
        if user_id == self.user_b_id:
            return self.unread_count_b
        return 0

    def __repr__(self) -> str:
        state = "unmatched" if self.unmatched else "active"
        return f"<Match {self.id} {state} super_like={self.is_super_like}>"


class SuperLikeEvent(Base):
    """Recipient-facing record that someone super-liked them."""

    __tablename__ = "super_like_events"

    from_user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    to_user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    seen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return f"<SuperLikeEvent {self.from_user_id} -> {self.to_user_id}>"
