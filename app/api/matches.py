"""
Frinder Ledger — Matches API

List, inspect and dissolve the caller's matches, and stream changes to the
match list (new matches, unmatches, previews and unread counts) over a
WebSocket.
"""

from __future__ import annotations

import structlog
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import (
    get_conversation_service,
    get_current_user_id,
    get_match_service,
    get_realtime_hub,
    get_session_factory,
    resolve_user_id,
)
from app.api.events import publish_match_event
from app.api.streaming import pump
from app.database import get_db
from app.errors import LedgerError
from app.models.match import Match
from app.schemas.match import MatchListItem, MatchResponse, UnreadTotalResponse
from app.services.conversation_service import ConversationService
from app.services.match_service import MatchService
from app.services.realtime import RealtimeHub, user_matches_topic

logger = structlog.get_logger("frinder.api.matches")

router = APIRouter()


def _to_list_item(match: Match, user_id: str) -> MatchListItem:
    other_id = match.other_member(user_id)
    return MatchListItem(
        match_id=match.id,
        other_user=(match.user_profiles or {}).get(other_id),
        is_super_like=match.is_super_like,
        last_message=match.last_message,
        last_message_at=match.last_message_at,
        unread_count=match.unread_count_for(user_id),
        is_new_match=match.last_message is None,
        created_at=match.created_at,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET / — List matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/",
    response_model=list[MatchListItem],
    summary="List the caller's matches, most recent activity first",
)
async def list_matches(
    include_unmatched: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    match_service: MatchService = Depends(get_match_service),
) -> list[MatchListItem]:
    matches = await match_service.list_matches(
        user_id, db, include_unmatched=include_unmatched
    )
    return [_to_list_item(m, user_id) for m in matches]


# ──────────────────────────────────────────────────────────────────────────────
# GET /unread — Total unread across active matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/unread",
    response_model=UnreadTotalResponse,
    summary="Total unread messages across the caller's matches",
)
async def unread_total(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> UnreadTotalResponse:
    total = await conversation_service.get_unread_total(user_id, db)
    return UnreadTotalResponse(unread_total=total)


# ──────────────────────────────────────────────────────────────────────────────
# WS /stream — Live match list
# ──────────────────────────────────────────────────────────────────────────────

@router.websocket("/stream")
async def stream_matches(
    websocket: WebSocket,
    user_id: str | None = Query(None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    match_service: MatchService = Depends(get_match_service),
    conversation_service: ConversationService = Depends(get_conversation_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> None:
    """Push the caller's match list, then every change to it.

    The first frame is a ``matches.snapshot`` with the active matches and the
    unread total.  Each later ``match.*`` event carries the caller's
    ``unread_count`` for that match and a fresh ``unread_total``.
    """
    try:
        caller = resolve_user_id(websocket.headers.get("x-user-id") or user_id)
    except LedgerError as exc:
        logger.info("match_stream_rejected", code=exc.code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = hub.subscribe(user_matches_topic(caller))
    log = logger.bind(user_id=caller)
    log.info("match_stream_opened")

    async def render(event: dict[str, Any]) -> dict[str, Any]:
        async with session_factory() as session:
            total = await conversation_service.get_unread_total(caller, session)
        counts = event.get("unread_counts") or {}
        return {
            "type": event["type"],
            "match": event["match"],
            "unread_count": counts.get(caller, 0),
            "unread_total": total,
        }

    try:
        async with session_factory() as session:
            matches = await match_service.list_matches(caller, session)
            total = await conversation_service.get_unread_total(caller, session)
        await websocket.send_json(
            {
                "type": "matches.snapshot",
                "matches": [
                    _to_list_item(m, caller).model_dump(mode="json") for m in matches
                ],
                "unread_total": total,
            }
        )
        await pump(websocket, subscription, render=render, log=log)
    finally:
        subscription.unsubscribe()
        log.info("match_stream_closed")


# ──────────────────────────────────────────────────────────────────────────────
# GET /{match_id} — Match detail
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{match_id}",
    response_model=MatchResponse,
    summary="Get a match the caller belongs to",
)
async def get_match(
    match_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    match_service: MatchService = Depends(get_match_service),
) -> Match:
    return await match_service.get_match(match_id, user_id, db)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{match_id}/unmatch — Dissolve a match
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{match_id}/unmatch",
    response_model=MatchResponse,
    summary="Unmatch; messages are retained",
)
async def unmatch(
    match_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    match_service: MatchService = Depends(get_match_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> Match:
    match = await match_service.unmatch(match_id, user_id, db)
    await db.commit()
    publish_match_event(hub, "match.unmatched", match)
    return match
