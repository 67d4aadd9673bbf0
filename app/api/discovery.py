"""
Frinder Ledger — Discovery API
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_discovery_service
from app.database import get_db
from app.models.user import User
from app.schemas.user import UserResponse
from app.services.discovery_service import DiscoveryService

logger = structlog.get_logger("frinder.api.discovery")

router = APIRouter()


@router.get(
    "/",
    response_model=list[UserResponse],
    summary="Profiles the caller can swipe on",
)
async def get_candidates(
    limit: int = Query(20, ge=1, le=100, description="Max profiles to return"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    discovery_service: DiscoveryService = Depends(get_discovery_service),
) -> list[User]:
    return await discovery_service.get_candidates(user_id, db, limit=limit)
