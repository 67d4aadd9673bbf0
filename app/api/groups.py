"""
Frinder Ledger — Groups API

Group deck, creation, joining, and approval of pending members of private
groups.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user_id, get_group_service
from app.database import get_db
from app.models.group import Group, GroupMember
from app.schemas.group import (
    GroupCreate,
    GroupJoinResponse,
    GroupMemberResponse,
    GroupResponse,
    MemberStatus,
)
from app.services.group_service import GroupService, JoinResult

logger = structlog.get_logger("frinder.api.groups")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /discover — Group deck
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/discover",
    response_model=list[GroupResponse],
    summary="Groups the caller has not joined yet, newest first",
)
async def discover_groups(
    limit: int = Query(10, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    group_service: GroupService = Depends(get_group_service),
) -> list[Group]:
    return await group_service.get_groups_to_swipe(user_id, db, limit=limit)


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=GroupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a group with the caller as first member",
)
async def create_group(
    payload: GroupCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    group_service: GroupService = Depends(get_group_service),
) -> Group:
    group = await group_service.create_group(user_id, db, **payload.model_dump())
    await db.commit()
    return await group_service.get_group(group.id, db)


# ──────────────────────────────────────────────────────────────────────────────
# GET /{group_id} — Detail and members
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{group_id}",
    response_model=GroupResponse,
    summary="Get a group",
)
async def get_group(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    group_service: GroupService = Depends(get_group_service),
) -> Group:
    return await group_service.get_group(group_id, db)


@router.get(
    "/{group_id}/members",
    response_model=list[GroupMemberResponse],
    summary="Members of a group",
)
async def list_members(
    group_id: str,
    member_status: MemberStatus = Query("member", alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    group_service: GroupService = Depends(get_group_service),
) -> list[GroupMember]:
    return await group_service.list_members(group_id, db, status=member_status)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{group_id}/join, /{group_id}/members/{member_id}/approve
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{group_id}/join",
    response_model=GroupJoinResponse,
    summary="Join a group (or request to join a private one)",
)
async def join_group(
    group_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    group_service: GroupService = Depends(get_group_service),
) -> JoinResult:
    return await group_service.join_group(group_id, user_id, db)


@router.post(
    "/{group_id}/members/{member_id}/approve",
    response_model=GroupMemberResponse,
    summary="Admit a pending member; creator only",
)
async def approve_member(
    group_id: str,
    member_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    group_service: GroupService = Depends(get_group_service),
) -> GroupMember:
    return await group_service.approve_member(group_id, user_id, member_id, db)
