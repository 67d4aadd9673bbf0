"""
Frinder Ledger — Group deck and membership.

Groups are discovered newest first; any group the viewer already belongs to
(or is waiting to be admitted to) is left out of the deck.  Joining is keyed
on ``(group_id, user_id)`` so a repeated join never double-counts, and
``member_count`` only moves through additive updates.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, UnauthorizedError, ValidationError
from app.models.group import Group, GroupMember
from app.models.user import User
from app.services.rate_limiter import RateLimiter
from app.utils.clock import utcnow
from app.utils.sanitizer import (
    MAX_DISPLAY_NAME_LENGTH,
    MAX_LOCATION_LENGTH,
    sanitize_bio,
    sanitize_input,
    sanitize_interests,
    validate_photo_url,
)

logger = structlog.get_logger("frinder.group_service")


@dataclass
class JoinResult:
    group_id: str
    status: str
    joined: bool


class GroupService:
    """Group discovery, creation and membership."""

    def __init__(self, rate_limiter: RateLimiter | None = None) -> None:
        self.rate_limiter = rate_limiter

    # ── Discovery ─────────────────────────────────────────────────────────

    async def get_groups_to_swipe(
        self, user_id: str, db_session: AsyncSession, limit: int = 10
    ) -> list[Group]:
        """Newest groups the viewer has not joined or requested to join."""
        own = select(GroupMember.group_id).where(GroupMember.user_id == user_id)
        stmt = (
            select(Group)
            .where(Group.id.not_in(own))
            .order_by(Group.created_at.desc(), Group.id)
            .limit(limit)
        )
        groups = list((await db_session.execute(stmt)).scalars().all())
        logger.debug("group_deck_built", user_id=user_id, count=len(groups))
        return groups

    async def get_group(self, group_id: str, db_session: AsyncSession) -> Group:
        group = await db_session.get(Group, group_id, populate_existing=True)
        if group is None:
            raise NotFoundError("Group", group_id)
        return group

    async def list_members(
        self, group_id: str, db_session: AsyncSession, status: str = "member"
    ) -> list[GroupMember]:
        await self.get_group(group_id, db_session)
        rows = await db_session.execute(
            select(GroupMember)
            .where(GroupMember.group_id == group_id, GroupMember.status == status)
            .order_by(GroupMember.joined_at)
        )
        return list(rows.scalars().all())

    # ── Mutations ─────────────────────────────────────────────────────────

    async def create_group(
        self,
        creator_id: str,
        db_session: AsyncSession,
        *,
        name: str,
        description: str = "",
        photo: str = "",
        interests: list[str] | None = None,
        activity: str = "",
        location: str | None = None,
        is_private: bool = False,
    ) -> Group:
        """Create a group with the creator as its first member."""
        if self.rate_limiter is not None:
            await self.rate_limiter.check(creator_id, "groupCreate")

        clean_name = sanitize_input(
            name, max_length=MAX_DISPLAY_NAME_LENGTH, allow_newlines=False
        )
        if not clean_name:
            raise ValidationError("Group name is empty after sanitisation.")
        if photo and not validate_photo_url(photo):
            raise ValidationError("Group photo must be hosted on the storage domain.")

        creator = await self._require_user(creator_id, db_session)
        now = utcnow()
        group = Group(
            name=clean_name,
            description=sanitize_bio(description),
            photo=photo or "",
            creator_id=creator_id,
            interests=sanitize_interests(interests or []),
            activity=sanitize_input(
                activity, max_length=MAX_DISPLAY_NAME_LENGTH, allow_newlines=False
            ),
            location=sanitize_input(
                location, max_length=MAX_LOCATION_LENGTH, allow_newlines=False
            ) or None,
            is_private=is_private,
            member_count=1,
            created_at=now,
        )
        db_session.add(group)
        await db_session.flush()
        db_session.add(
            GroupMember(
                group_id=group.id,
                user_id=creator_id,
                status="member",
                profile=creator.snapshot(),
                joined_at=now,
            )
        )
        await db_session.flush()

        logger.info("group_created", group_id=group.id, creator_id=creator_id)
        return group

    async def join_group(
        self, group_id: str, user_id: str, db_session: AsyncSession
    ) -> JoinResult:
        """Join ``group_id``; private groups record a pending request instead.

        Idempotent: joining again returns the existing status with
        ``joined=False``.
        """
        group = await self.get_group(group_id, db_session)
        user = await self._require_user(user_id, db_session)
        status = "pending" if group.is_private else "member"
        log = logger.bind(group_id=group_id, user_id=user_id)

        existing = await db_session.get(GroupMember, (group_id, user_id))
        if existing is not None:
            return JoinResult(group_id=group_id, status=existing.status, joined=False)

        try:
            async with db_session.begin_nested():
                db_session.add(
                    GroupMember(
                        group_id=group_id,
                        user_id=user_id,
                        status=status,
                        profile=user.snapshot(),
                        joined_at=utcnow(),
                    )
                )
                if status == "member":
                    await self._bump_member_count(group_id, 1, db_session)
        except IntegrityError:
            existing = await db_session.get(
                GroupMember, (group_id, user_id), populate_existing=True
            )
            if existing is None:
                raise
            log.info("group_join_race_resolved")
            return JoinResult(group_id=group_id, status=existing.status, joined=False)

        log.info("group_joined", status=status)
        return JoinResult(group_id=group_id, status=status, joined=True)

    async def approve_member(
        self, group_id: str, creator_id: str, user_id: str, db_session: AsyncSession
    ) -> GroupMember:
        """Admit a pending member of a private group.  Creator only."""
        group = await self.get_group(group_id, db_session)
        if group.creator_id != creator_id:
            raise UnauthorizedError(
                "Only the group creator can approve members.", group_id=group_id
            )
        membership = await db_session.get(
            GroupMember, (group_id, user_id), populate_existing=True
        )
        if membership is None:
            raise NotFoundError("GroupMember", f"{group_id}/{user_id}")
        if membership.status != "pending":
            return membership

        membership.status = "member"
        await self._bump_member_count(group_id, 1, db_session)
        await db_session.flush()
        logger.info("group_member_approved", group_id=group_id, user_id=user_id)
        return membership

    # ── Private helpers ──────────────────────────────────────────────────

    @staticmethod
    async def _require_user(user_id: str, db_session: AsyncSession) -> User:
        user = await db_session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    @staticmethod
    async def _bump_member_count(
        group_id: str, delta: int, db_session: AsyncSession
    ) -> None:
        await db_session.execute(
            update(Group)
            .where(Group.id == group_id)
            .values(member_count=Group.member_count + delta)
            .execution_options(synchronize_session=False)
        )
