"""Live-update WebSocket: relays the caller's ``user_{id}`` topic.

  GET /progress/live?token=<access token>

Browsers cannot set an Authorization header on a WebSocket handshake, so
the token comes in the query string.  A missing or invalid token closes
the socket with 1008 (policy violation) before it is accepted.

After accept the server sends ``{"type": "connected", "userId": ...}``,
then forwards each envelope published for that user until the client
disconnects.
"""

from __future__ import annotations

import asyncio
import logging

import jwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from quiz_progress.api.dependencies import principal_from_token
from quiz_progress.core.metrics import LIVE_CONNECTIONS
from quiz_progress.services.fanout import Subscription, live_broker, user_topic

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


async def _relay(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        envelope = await subscription.get()
        await websocket.send_json(envelope)


async def _drain(websocket: WebSocket) -> None:
    # Client messages are ignored; this only notices the disconnect.
    while True:
        await websocket.receive_text()


@router.websocket("/progress/live")
async def live_updates(websocket: WebSocket, token: str | None = None) -> None:
    try:
        principal = principal_from_token(token) if token else None
    except jwt.InvalidTokenError as e:
        logger.warning("Live connection rejected: %s", e)
        principal = None
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    LIVE_CONNECTIONS.inc()
    topic = user_topic(principal.user_id)
    logger.info("Live connection opened on %s", topic)
    try:
        async with live_broker.subscribe(topic) as subscription:
            await websocket.send_json(
                {"type": "connected", "userId": principal.user_id}
            )
            tasks = {
                asyncio.create_task(_relay(websocket, subscription)),
                asyncio.create_task(_drain(websocket)),
            }
            done, pending = await asyncio.wait(
                tasks, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.error(
                        "Live connection on %s failed", topic, exc_info=exc
                    )
    finally:
        LIVE_CONNECTIONS.dec()
        logger.info("Live connection closed on %s", topic)
