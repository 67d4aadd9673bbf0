"""
Frinder Ledger — WebSocket plumbing shared by the stream routes.

A stream runs two loops side by side: one forwards hub events to the client,
the other reads client frames so a disconnect is noticed even while no event
is being published.  Whichever loop ends first stops the other, and the
subscription is released immediately.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog
from fastapi import WebSocket, WebSocketDisconnect

from app.services.realtime import Subscription

logger = structlog.get_logger("frinder.api.streaming")

Render = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


async def _send_loop(
    websocket: WebSocket, subscription: Subscription, render: Render | None
) -> None:
    async for event in subscription:
        if render is not None:
            event = await render(event)
        await websocket.send_json(event)


async def _receive_loop(websocket: WebSocket) -> None:
    # Streams are push-only; client frames are read and dropped.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def pump(
    websocket: WebSocket,
    subscription: Subscription,
    render: Render | None = None,
    log: Any = None,
) -> None:
    """Forward ``subscription`` to an accepted ``websocket`` until either side
    goes away.  Always unsubscribes before returning."""
    log = log or logger
    sender = asyncio.create_task(_send_loop(websocket, subscription, render))
    receiver = asyncio.create_task(_receive_loop(websocket))
    try:
        done, pending = await asyncio.wait(
            {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        subscription.unsubscribe()
        for task in (sender, receiver):
            task.cancel()
        await asyncio.gather(sender, receiver, return_exceptions=True)

    for task in done:
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is None or isinstance(exc, WebSocketDisconnect):
            log.info("stream_ended", by="client" if task is receiver else "server")
        else:
            log.error("stream_failed", error=str(exc))
            raise exc
