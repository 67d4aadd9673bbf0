"""
Frinder Ledger — Users API

Profile-provider mirror: register the caller's profile and apply partial
updates.  Every update is sanitised, rate-limited under ``profileUpdate``,
and then propagated to the snapshots stored on the caller's matches.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_match_service, get_rate_limiter
from app.database import get_db
from app.errors import ConflictError, NotFoundError, ValidationError
from app.models.user import User
from app.schemas.user import ProfileUpdate, ProfileUpdateResponse, UserCreate, UserResponse
from app.services.match_service import MatchService
from app.services.rate_limiter import RateLimiter
from app.utils.sanitizer import sanitize_display_name, sanitize_email, sanitize_profile_data

logger = structlog.get_logger("frinder.api.users")

router = APIRouter()


def _is_complete(user: User) -> bool:
    return bool(user.display_name and user.age and user.photos)


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Register the caller's profile
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register the caller's profile",
)
async def create_user(
    payload: UserCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    log = logger.bind(user_id=user_id)
    log.info("create_user_start")

    email = sanitize_email(payload.email)
    display_name = sanitize_display_name(payload.display_name)
    if not email:
        raise ValidationError("A valid email address is required.")
    if not display_name:
        raise ValidationError("Display name is empty after sanitisation.")

    if await db.get(User, user_id) is not None:
        raise ConflictError("Profile already exists.", user_id=user_id)
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        log.warning("create_user_duplicate_email")
        raise ConflictError("A user with this email already exists.")

    user = User(
        id=user_id,
        email=email,
        display_name=display_name,
        age=payload.age,
        gender=payload.gender,
        university=payload.university,
        bio="",
        photos=[],
        interests=[],
        is_profile_complete=False,
        is_banned=False,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    log.info("create_user_complete")
    return user


# ──────────────────────────────────────────────────────────────────────────────
# GET /me — Caller's profile
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get the caller's profile",
)
async def get_me(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


# ──────────────────────────────────────────────────────────────────────────────
# PATCH /me — Partial profile update
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/me",
    response_model=ProfileUpdateResponse,
    summary="Update the caller's profile",
)
async def update_me(
    payload: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    match_service: MatchService = Depends(get_match_service),
) -> ProfileUpdateResponse:
    """Apply only the fields present in the request body.

    Propagation to match snapshots is best-effort: a failure is reported in
    ``warnings`` while the profile update itself still commits.
    """
    await rate_limiter.check(user_id, "profileUpdate")

    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)

    changes = sanitize_profile_data(payload.model_dump(exclude_unset=True))
    if "display_name" in changes and not changes["display_name"]:
        raise ValidationError("Display name is empty after sanitisation.")

    for field, value in changes.items():
        setattr(user, field, value)
    user.is_profile_complete = _is_complete(user)
    await db.flush()
    await db.refresh(user)

    outcome = await match_service.propagate_profile_update(user_id, db)
    logger.info(
        "profile_updated",
        user_id=user_id,
        fields=sorted(changes),
        propagated=outcome.is_ok,
    )
    return ProfileUpdateResponse(
        user=UserResponse.model_validate(user),
        matches_refreshed=outcome.value or 0,
        warnings=[] if outcome.is_ok else [outcome.error],
    )
