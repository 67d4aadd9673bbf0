from pydantic import BaseModel
from datetime import datetime
from typing import Optional

from app.schemas.user import ProfileSnapshot

class MatchResponse(BaseModel):
    id: str
    user_a_id: str
    user_b_id: str
    user_profiles: dict[str, ProfileSnapshot] = {}
    created_at: datetime
    unmatched: bool
    unmatched_at: Optional[datetime] = None
    unmatched_by: Optional[str] = None
    rematched_at: Optional[datetime] = None
    is_super_like: bool
    super_liked_by: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_sender_id: Optional[str] = None

    model_config = {"from_attributes": True}

class MatchListItem(BaseModel):
    match_id: str
    other_user: Optional[ProfileSnapshot] = None
    is_super_like: bool
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int
    is_new_match: bool
    created_at: datetime

class UnreadTotalResponse(BaseModel):
    unread_total: int
