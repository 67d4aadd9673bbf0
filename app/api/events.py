"""
Frinder Ledger — Real-time event payloads.

Routes publish only after their transaction has committed, so readers never
observe a snapshot that is later rolled back.
"""

from __future__ import annotations

from app.models.match import Match
from app.models.message import Message
from app.schemas.match import MatchResponse
from app.schemas.message import MessageResponse
from app.services.realtime import RealtimeHub, match_topic, user_matches_topic


def publish_message_event(hub: RealtimeHub, kind: str, message: Message) -> None:
    hub.publish(
        match_topic(message.match_id),
        {
            "type": kind,
            "message": MessageResponse.model_validate(message).model_dump(mode="json"),
        },
    )


def publish_match_event(hub: RealtimeHub, kind: str, match: Match) -> None:
    """Fan a match snapshot out to both members' match-list topics."""
    payload = {
        "type": kind,
        "match": MatchResponse.model_validate(match).model_dump(mode="json"),
        "unread_counts": {
            member_id: match.unread_count_for(member_id)
            for member_id in match.member_ids
        },
    }
    for member_id in match.member_ids:
        hub.publish(user_matches_topic(member_id), payload)
