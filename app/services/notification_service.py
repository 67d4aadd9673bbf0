"""
Frinder Ledger — Notification dispatch (event contract only).

The ledger emits ``notify(to_user_id, from_user_id, kind)`` after a write
has been made; delivery (push, email) belongs to an external service.
Dispatch is fire-and-forget: :func:`dispatch_safely` logs and swallows every
failure so a broken notifier can never roll back a swipe or a match.
"""

from __future__ import annotations

from typing import Literal, Protocol

import httpx
import structlog

from app.config import get_settings
from app.utils.outcome import Outcome

logger = structlog.get_logger("frinder.notification_service")

NotificationKind = Literal["like", "superlike", "match"]


class NotificationDispatcher(Protocol):
    async def notify(
        self, to_user_id: str, from_user_id: str, kind: NotificationKind
    ) -> None: ...


class LoggingNotificationDispatcher:
    """Default dispatcher: records the event in the structured log."""

    async def notify(
        self, to_user_id: str, from_user_id: str, kind: NotificationKind
    ) -> None:
        logger.info(
            "notification_emitted",
            to_user_id=to_user_id,
            from_user_id=from_user_id,
            kind=kind,
        )


class HttpNotificationDispatcher:
    """POST the event to the external notification service.

    The ``httpx.AsyncClient`` is owned by the caller (the app lifespan) and
    shared across notifications so connections are pooled.
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def notify(
        self, to_user_id: str, from_user_id: str, kind: NotificationKind
    ) -> None:
        payload = {
            "to_user_id": to_user_id,
            "from_user_id": from_user_id,
            "type": kind,
        }
        resp = await self._client.post(
            self.url, json=payload, timeout=self.timeout_seconds
        )
        resp.raise_for_status()


async def dispatch_safely(
    dispatcher: NotificationDispatcher,
    to_user_id: str,
    from_user_id: str,
    kind: NotificationKind,
) -> Outcome[None]:
    """Send one notification; never raises."""
    try:
        await dispatcher.notify(to_user_id, from_user_id, kind)
    except Exception as exc:
        logger.warning(
            "notification_failed",
            to_user_id=to_user_id,
            from_user_id=from_user_id,
            kind=kind,
            error=str(exc),
        )
        return Outcome.soft_failure(f"notification_failed:{kind}")
    return Outcome.ok()


def build_dispatcher(client: httpx.AsyncClient | None = None) -> NotificationDispatcher:
    """HTTP dispatcher when a webhook URL and a shared client are available,
    otherwise the logging dispatcher."""
    settings = get_settings()
    if settings.NOTIFICATION_WEBHOOK_URL and client is not None:
        return HttpNotificationDispatcher(
            settings.NOTIFICATION_WEBHOOK_URL,
            client,
            timeout_seconds=settings.NOTIFICATION_TIMEOUT_SECONDS,
        )
    return LoggingNotificationDispatcher()
