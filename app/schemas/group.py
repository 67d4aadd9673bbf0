from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Literal, Optional

from app.schemas.user import ProfileSnapshot

MemberStatus = Literal["member", "pending"]

class GroupCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    description: str = ""
    photo: str = ""
    interests: list[str] = []
    activity: str = ""
    location: Optional[str] = None
    is_private: bool = False

class GroupResponse(BaseModel):
    id: str
    name: str
    description: str
    photo: str
    creator_id: str
    interests: list[str] = []
    activity: str
    location: Optional[str] = None
    is_private: bool
    member_count: int
    created_at: datetime

    model_config = {"from_attributes": True}

class GroupJoinResponse(BaseModel):
    group_id: str
    status: MemberStatus
    joined: bool

    model_config = {"from_attributes": True}

class GroupMemberResponse(BaseModel):
    user_id: str
    status: MemberStatus
    profile: Optional[ProfileSnapshot] = None
    joined_at: datetime

    model_config = {"from_attributes": True}
