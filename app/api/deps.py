"""
Frinder Ledger — Shared FastAPI dependencies.

The rate limiter, notification dispatcher and realtime hub live on
``app.state`` (see ``app.main.lifespan``); services are cheap per-request
objects.  Tests swap any of them through ``app.dependency_overrides``.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, Header
from starlette.requests import HTTPConnection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.database import async_session_factory
from app.errors import AuthenticationError, ValidationError
from app.models.match import MATCH_KEY_SEPARATOR, is_valid_user_id
from app.services.conversation_service import ConversationService
from app.services.credit_service import CreditService
from app.services.discovery_service import DiscoveryService
from app.services.group_service import GroupService
from app.services.match_service import MatchService
from app.services.notification_service import NotificationDispatcher
from app.services.rate_limiter import RateLimiter
from app.services.realtime import RealtimeHub
from app.services.swipe_service import SwipeService

logger = structlog.get_logger("frinder.api.deps")


# ── Identity ──────────────────────────────────────────────────────────────


def resolve_user_id(raw: str | None) -> str:
    """Normalise an asserted caller id.

    Ids containing the match-key separator are refused here so no two pairs
    of users can ever share a match id.
    """
    user_id = (raw or "").strip()
    if not user_id:
        raise AuthenticationError("Missing X-User-Id header.")
    if not is_valid_user_id(user_id):
        raise ValidationError(
            f"User ids may not contain {MATCH_KEY_SEPARATOR!r}.", user_id=user_id
        )
    return user_id


async def get_current_user_id(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
) -> str:
    """Caller identity as asserted by the upstream auth layer."""
    return resolve_user_id(x_user_id)


async def require_billing_secret(
    x_billing_secret: str | None = Header(None, alias="X-Billing-Secret"),
) -> None:
    expected = get_settings().BILLING_WEBHOOK_SECRET
    if not expected or x_billing_secret != expected:
        logger.warning("billing_secret_rejected")
        raise AuthenticationError("Invalid billing credentials.")


# ── Process-wide collaborators (built by the app lifespan) ────────────────


def get_rate_limiter(conn: HTTPConnection) -> RateLimiter:
    return conn.app.state.rate_limiter


def get_dispatcher(conn: HTTPConnection) -> NotificationDispatcher:
    return conn.app.state.dispatcher


def get_realtime_hub(conn: HTTPConnection) -> RealtimeHub:
    return conn.app.state.realtime_hub


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for long-lived handlers (WebSockets) that must not
    pin a pooled connection for their whole lifetime."""
    return async_session_factory


def get_match_service() -> MatchService:
    return MatchService()


def get_credit_service() -> CreditService:
    return CreditService()


def get_discovery_service() -> DiscoveryService:
    return DiscoveryService()


def get_group_service(
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
) -> GroupService:
    return GroupService(rate_limiter)


def get_swipe_service(
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    credit_service: CreditService = Depends(get_credit_service),
    match_service: MatchService = Depends(get_match_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> SwipeService:
    return SwipeService(
        rate_limiter,
        credit_service=credit_service,
        match_service=match_service,
        dispatcher=dispatcher,
    )


def get_conversation_service(
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    match_service: MatchService = Depends(get_match_service),
) -> ConversationService:
    return ConversationService(rate_limiter, match_service=match_service)
