"""
Frinder Ledger — Credits & Subscriptions API

Caller-facing balance reads plus the internal billing endpoints that apply
completed purchases and membership changes.  Billing endpoints require the
``X-Billing-Secret`` header to match ``BILLING_WEBHOOK_SECRET``.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_credit_service, get_current_user_id, require_billing_secret
from app.database import get_db
from app.errors import NotFoundError
from app.models.credits import UserCredits, UserSubscription
from app.schemas.credits import (
    CreditsResponse,
    FreeSuperLikeResponse,
    MembershipActivate,
    MembershipCancel,
    PurchaseRequest,
    SubscriptionResponse,
)
from app.services.credit_service import CreditService

logger = structlog.get_logger("frinder.api.credits")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# Caller-facing
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/me",
    response_model=CreditsResponse,
    summary="The caller's super-like balance",
)
async def get_my_credits(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> UserCredits:
    return await credit_service.get_credits(user_id, db)


@router.get(
    "/me/subscription",
    response_model=SubscriptionResponse,
    summary="The caller's subscription and entitlements",
)
async def get_my_subscription(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> UserSubscription:
    return await credit_service.get_subscription(user_id, db)


@router.post(
    "/me/free-super-like",
    response_model=FreeSuperLikeResponse,
    summary="Claim the periodic free super-like",
)
async def claim_free_super_like(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> FreeSuperLikeResponse:
    granted = await credit_service.claim_free_super_like(user_id, db)
    credits = await credit_service.get_credits(user_id, db)
    return FreeSuperLikeResponse(
        granted=granted, credits=CreditsResponse.model_validate(credits)
    )


# ──────────────────────────────────────────────────────────────────────────────
# Billing (internal)
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/purchases",
    response_model=CreditsResponse,
    dependencies=[Depends(require_billing_secret)],
    summary="Apply a completed super-like purchase",
)
async def apply_purchase(
    payload: PurchaseRequest,
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> UserCredits:
    return await credit_service.add_purchased_super_likes(
        payload.user_id, payload.amount, db
    )


@router.post(
    "/subscriptions/activate",
    response_model=SubscriptionResponse,
    dependencies=[Depends(require_billing_secret)],
    summary="Grant every premium entitlement",
)
async def activate_membership(
    payload: MembershipActivate,
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> UserSubscription:
    return await credit_service.activate_membership(
        payload.user_id, payload.membership_id, db
    )


@router.post(
    "/subscriptions/cancel",
    response_model=SubscriptionResponse,
    dependencies=[Depends(require_billing_secret)],
    summary="Revoke every premium entitlement",
)
async def cancel_membership(
    payload: MembershipCancel,
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> UserSubscription:
    sub = await credit_service.cancel_membership(payload.membership_id, db)
    if sub is None:
        raise NotFoundError("Membership", payload.membership_id)
    return sub


@router.post(
    "/subscriptions/cancel-at-period-end",
    response_model=SubscriptionResponse,
    summary="Schedule the caller's membership to lapse at period end",
)
async def cancel_at_period_end(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    credit_service: CreditService = Depends(get_credit_service),
) -> UserSubscription:
    return await credit_service.mark_cancel_at_period_end(user_id, db)
