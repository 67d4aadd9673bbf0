from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Literal, Optional

class MessageCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = ""
    image_url: Optional[str] = None
    reply_to_id: Optional[str] = None

class MessageEdit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str

class MessageResponse(BaseModel):
    id: str
    match_id: str
    sender_id: str
    text: str
    message_type: Literal["text", "image"]
    image_url: Optional[str] = None
    reply_to_id: Optional[str] = None
    reply_to_text: Optional[str] = None
    reply_to_sender_id: Optional[str] = None
    read: bool
    edited: bool
    edited_at: Optional[datetime] = None
    deleted: bool
    deleted_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}

class MarkReadResponse(BaseModel):
    marked: int = 0
    warning: Optional[str] = None

class ReconcileResponse(BaseModel):
    unread_count: int
