from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Literal, Optional

from app.schemas.user import ProfileSnapshot

SwipeDirection = Literal["left", "right", "superlike"]

class SwipeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_id: str
    direction: SwipeDirection

class SwipeResponse(BaseModel):
    is_match: bool
    match_id: Optional[str] = None
    is_super_like: bool = False
    show_ad: bool = False
    warnings: list[str] = []

    model_config = {"from_attributes": True}

class LikeReceived(BaseModel):
    user: ProfileSnapshot
    direction: SwipeDirection
    swiped_at: datetime

class SuperLikeReceived(BaseModel):
    from_user_id: str
    created_at: datetime
    seen: bool

    model_config = {"from_attributes": True}

class RewindResponse(BaseModel):
    target_id: str
    direction: SwipeDirection
