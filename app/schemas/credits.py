from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

class CreditsResponse(BaseModel):
    user_id: str
    super_likes: int
    total_super_likes_purchased: int
    last_free_super_like: Optional[datetime] = None

    model_config = {"from_attributes": True}

class SubscriptionResponse(BaseModel):
    user_id: str
    is_premium: bool
    is_ad_free: bool
    premium_expires_at: Optional[datetime] = None
    unlimited_super_likes: bool
    can_see_who_liked_you: bool
    unlimited_rewinds: bool
    priority_in_discovery: bool
    advanced_filters: bool
    cancel_at_period_end: bool
    pro_super_likes_remaining: int
    pro_super_likes_reset_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class PurchaseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    amount: int = Field(gt=0, le=1000)

class FreeSuperLikeResponse(BaseModel):
    granted: bool
    credits: CreditsResponse

class MembershipActivate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str
    membership_id: str = Field(min_length=1)

class MembershipCancel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    membership_id: str = Field(min_length=1)
