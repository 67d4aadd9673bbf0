"""
Frinder Ledger — Conversations API

Per-match message ledger plus a WebSocket stream of message events.
"""

from __future__ import annotations

import structlog
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
from app.api.events import publish_match_event, publish_message_event
from app.api.streaming import pump
from app.database import get_db
from app.errors import LedgerError
from app.models.match import Match
from app.models.message import Message
from app.schemas.message import (
    MarkReadResponse,
    MessageCreate,
    MessageEdit,
    MessageResponse,
    ReconcileResponse,
)
from app.services.conversation_service import ConversationService
from app.services.match_service import MatchService
from app.services.realtime import RealtimeHub, match_topic

logger = structlog.get_logger("frinder.api.conversations")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /{match_id}/messages — History
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{match_id}/messages",
    response_model=list[MessageResponse],
    summary="Messages of a match, oldest first",
)
async def list_messages(
    match_id: str,
    limit: int | None = Query(None, ge=1, le=500),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
) -> list[Message]:
    return await conversation_service.get_messages(match_id, user_id, db, limit=limit)


# ──────────────────────────────────────────────────────────────────────────────
# POST /{match_id}/messages — Send
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{match_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Send a message to an active match",
)
async def send_message(
    match_id: str,
    payload: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> Message:
    message = await conversation_service.send_message(
        match_id,
        user_id,
        payload.text,
        db,
        image_url=payload.image_url,
        reply_to_id=payload.reply_to_id,
    )
    await db.commit()

    publish_message_event(hub, "message.created", message)
    match = await db.get(Match, match_id, populate_existing=True)
    if match is not None:
        publish_match_event(hub, "match.updated", match)
    return message


# ──────────────────────────────────────────────────────────────────────────────
# PATCH / DELETE /{match_id}/messages/{message_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.patch(
    "/{match_id}/messages/{message_id}",
    response_model=MessageResponse,
    summary="Edit one of the caller's messages",
)
async def edit_message(
    match_id: str,
    message_id: str,
    payload: MessageEdit,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> Message:
    message = await conversation_service.edit_message(
        match_id, message_id, user_id, payload.text, db
    )
    await db.commit()
    publish_message_event(hub, "message.edited", message)
    return message


@router.delete(
    "/{match_id}/messages/{message_id}",
    response_model=MessageResponse,
    summary="Delete one of the caller's messages for everyone",
)
async def delete_message(
    match_id: str,
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> Message:
    message = await conversation_service.delete_message_for_everyone(
        match_id, message_id, user_id, db
    )
    await db.commit()
    publish_message_event(hub, "message.deleted", message)
    return message


# ──────────────────────────────────────────────────────────────────────────────
# Read-state
# ──────────────────────────────────────────────────────────────────────────────

async def _publish_read_state(hub: RealtimeHub, match_id: str, db: AsyncSession) -> None:
    match = await db.get(Match, match_id, populate_existing=True)
    if match is not None:
        publish_match_event(hub, "match.updated", match)


@router.post(
    "/{match_id}/read",
    response_model=MarkReadResponse,
    summary="Mark incoming messages as read",
)
async def mark_read(
    match_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> MarkReadResponse:
    outcome = await conversation_service.mark_messages_as_read(match_id, user_id, db)
    await db.commit()
    await _publish_read_state(hub, match_id, db)
    if outcome.is_soft_failure:
        return MarkReadResponse(warning=outcome.error)
    return MarkReadResponse(marked=outcome.value or 0)


@router.post(
    "/{match_id}/unread/reconcile",
    response_model=ReconcileResponse,
    summary="Recompute the caller's unread counter from message flags",
)
async def reconcile_unread(
    match_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    conversation_service: ConversationService = Depends(get_conversation_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> ReconcileResponse:
    count = await conversation_service.reconcile_unread_count(match_id, user_id, db)
    await db.commit()
    await _publish_read_state(hub, match_id, db)
    return ReconcileResponse(unread_count=count)


# ──────────────────────────────────────────────────────────────────────────────
# WS /{match_id}/stream — Live message events
# ──────────────────────────────────────────────────────────────────────────────

@router.websocket("/{match_id}/stream")
async def stream_messages(
    websocket: WebSocket,
    match_id: str,
    user_id: str | None = Query(None),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    match_service: MatchService = Depends(get_match_service),
    hub: RealtimeHub = Depends(get_realtime_hub),
) -> None:
    """Push every message event of ``match_id`` to a member.

    Identity comes from the ``X-User-Id`` header, or the ``user_id`` query
    parameter for clients that cannot set WebSocket headers.
    """
    try:
        caller = resolve_user_id(websocket.headers.get("x-user-id") or user_id)
        async with session_factory() as session:
            await match_service.get_match(match_id, caller, session)
    except LedgerError as exc:
        logger.info("stream_rejected", match_id=match_id, code=exc.code)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = hub.subscribe(match_topic(match_id))
    log = logger.bind(match_id=match_id, user_id=caller)
    log.info("stream_opened")
    try:
        await pump(websocket, subscription, log=log)
    finally:
        log.info("stream_closed")
