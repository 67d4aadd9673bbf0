"""
Frinder Ledger — Group and GroupMember models.

A group is a named interest circle users discover and join from the group
deck.  Membership rows are keyed ``(group_id, user_id)``, so joining twice is
a no-op.  Private groups admit new members as ``pending`` until the creator
approves them.  ``member_count`` counts approved members only and is changed
with additive updates.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType

MEMBER_STATUSES = ("member", "pending")


class Group(Base):
    __tablename__ = "groups"
    __table_args__ = (
        CheckConstraint("member_count >= 0", name="ck_groups_member_count"),
        Index("ix_groups_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    photo: Mapped[str] = mapped_column(String, default="", nullable=False)
    creator_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    interests: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    activity: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    member_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Group {self.id} {self.name!r} members={self.member_count}>"


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (
        CheckConstraint(
            "status IN ('member', 'pending')", name="ck_group_members_status"
        ),
        Index("ix_group_members_user", "user_id"),
    )

    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[str] = mapped_column(String(16), default="member", nullable=False)
    profile: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
