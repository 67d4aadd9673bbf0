from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

class ProfileSnapshot(BaseModel):
    uid: str
    display_name: str
    photos: list[str] = []
    bio: str = ""
    interests: list[str] = []
    age: Optional[int] = None
    university: Optional[str] = None

class UserResponse(BaseModel):
    id: str
    display_name: str
    bio: str
    age: Optional[int]
    gender: Optional[str]
    city: Optional[str]
    country: Optional[str]
    university: Optional[str]
    photos: list[str] = []
    interests: list[str] = []
    is_profile_complete: bool
    created_at: datetime

    model_config = {"from_attributes": True}

class ProfileUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_name: Optional[str] = Field(None, min_length=1)
    bio: Optional[str] = None
    age: Optional[int] = Field(None, ge=18, le=120)
    gender: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    university: Optional[str] = None
    photos: Optional[list[str]] = None
    interests: Optional[list[str]] = None

class ProfileUpdateResponse(BaseModel):
    user: UserResponse
    matches_refreshed: int
    warnings: list[str] = []

class UserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    display_name: str = Field(min_length=1)
    age: Optional[int] = Field(None, ge=18, le=120)
    gender: Optional[str] = None
    university: Optional[str] = None
