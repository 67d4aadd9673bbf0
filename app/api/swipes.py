"""
Frinder Ledger — Swipes API

Record swipe decisions, list incoming likes, and rewind a pass.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_realtime_hub, get_swipe_service
from app.api.events import publish_match_event
from app.database import get_db
from app.models.match import Match
from app.schemas.swipe import (
    LikeReceived,
    RewindResponse,
    SuperLikeReceived,
    SwipeCreate,
    SwipeResponse,
)
from app.services.realtime import RealtimeHub
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("frinder.api.swipes")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Record a swipe
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=SwipeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a swipe decision",
)
async def record_swipe(
    payload: SwipeCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> SwipeResponse:
    """Record the caller's decision about ``target_id``.

    A mutual right swipe, or any super-like, yields ``is_match=True`` and the
    deterministic match id.  Storage failures are reported as
    ``is_match=False`` with a warning rather than an error.  Notifications
    go out after the commit, once the response has been sent.
    """
    result = await swipe_service.record_swipe(
        user_id, payload.target_id, payload.direction, db
    )
    await db.commit()

    if result.notifications:
        background_tasks.add_task(
            swipe_service.dispatch_notifications, result.notifications
        )

    if result.is_match and result.match_id:
        match = await db.get(Match, result.match_id)
        if match is not None:
            publish_match_event(hub, "match.updated", match)

    return SwipeResponse.model_validate(result)


# ──────────────────────────────────────────────────────────────────────────────
# GET /likes — Who liked me (premium)
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/likes",
    response_model=list[LikeReceived],
    summary="List users who liked the caller",
)
async def list_likes_received(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
) -> list[dict]:
    return await swipe_service.get_likes_received(user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# GET /superlikes — Incoming super-likes
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/superlikes",
    response_model=list[SuperLikeReceived],
    summary="List super-likes the caller received",
)
async def list_super_likes_received(
    unseen_only: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
) -> list:
    return await swipe_service.get_super_likes_received(
        user_id, db, unseen_only=unseen_only
    )


@router.post(
    "/superlikes/seen",
    summary="Mark received super-likes as seen",
)
async def mark_super_likes_seen(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
) -> dict:
    marked = await swipe_service.mark_super_likes_seen(user_id, db)
    return {"marked": marked}


# ──────────────────────────────────────────────────────────────────────────────
# POST /rewind — Undo the last pass (premium)
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/rewind",
    response_model=RewindResponse,
    summary="Undo the caller's most recent pass",
)
async def rewind_last_swipe(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    swipe_service: SwipeService = Depends(get_swipe_service),
) -> RewindResponse:
    swipe = await swipe_service.rewind_last_swipe(user_id, db)
    return RewindResponse(target_id=swipe.target_id, direction=swipe.direction)
