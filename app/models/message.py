"""
Frinder Ledger — Message model (child ledger of a Match).
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

DELETED_PLACEHOLDER = "This message was deleted"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_match_created", "match_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    match_id: Mapped[str] = mapped_column(
        String(260), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[str] = mapped_column(String(128), nullable=False)
    text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    message_type: Mapped[str] = mapped_column(
        String, default="text", nullable=False, comment="text / image"
    )
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)

    # ── Quoted reply ───────────────────────────────────────────────
    reply_to_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reply_to_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    reply_to_sender_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True
    )

    # ── State flags ────────────────────────────────────────────────
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    edited_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Message {self.id} match={self.match_id} from={self.sender_id}>"
