"""
Frinder Ledger — User profile model.

Mirror of the profile provider's record.  The ledger reads and snapshots it;
only the profile-update path writes to it.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(128), primary_key=True, comment="Identity-provider uid"
    )
    email: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String, nullable=False)
    bio: Mapped[str] = mapped_column(Text, default="", nullable=False)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender: Mapped[str | None] = mapped_column(String, nullable=True)
    city: Mapped[str | None] = mapped_column(String, nullable=True)
    country: Mapped[str | None] = mapped_column(String, nullable=True)
    university: Mapped[str | None] = mapped_column(String, nullable=True)
    photos: Mapped[list] = mapped_column(
        JSONType, default=list, nullable=False, comment="Array of photo URLs"
    )
    interests: Mapped[list] = mapped_column(
        JSONType, default=list, nullable=False
    )
    is_profile_complete: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, index=True
    )
    is_banned: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def snapshot(self) -> dict:
        """Denormalised view stored on Match documents."""
        return {
            "uid": self.id,
            "display_name": self.display_name,
            "photos": list(self.photos or []),
            "bio": self.bio or "",
            "interests": list(self.interests or []),
            "age": self.age,
            "university": self.university,
        }

    def __repr__(self) -> str:
        return f"<User {self.email!r} id={self.id}>"
