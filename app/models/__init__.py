"""
Frinder Ledger — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from app.models.user import User
from app.models.match import Match, Swipe, SuperLikeEvent, match_key
from app.models.message import Message
from app.models.credits import UserCredits, UserSubscription
from app.models.group import Group, GroupMember

__all__ = [
    "User",
    "Match",
    "Swipe",
    "SuperLikeEvent",
    "Message",
    "UserCredits",
    "UserSubscription",
    "Group",
    "GroupMember",
    "match_key",
]
