"""WebSocket endpoint streaming live availability per site."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend.domain.errors import DependencyFailureError
from backend.services.pubsub import QueueSubscriber, SubscriptionHub
from backend.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])

JOIN_ACTION = "join"
LEAVE_ACTION = "leave"


def _parse_site_id(payload: dict[str, Any]) -> int | None:
    value = payload.get("site_id")
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and value > 0:
        return value
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None


async def _receive_commands(
    websocket: WebSocket,
    hub: SubscriptionHub,
    subscriber: QueueSubscriber,
) -> None:
    while True:
        payload = await websocket.receive_json()
        if not isinstance(payload, dict):
            await websocket.send_json({"event": "error", "detail": "Expected a JSON object"})
            continue

        action = payload.get("action")
        site_id = _parse_site_id(payload)
        if action not in (JOIN_ACTION, LEAVE_ACTION) or site_id is None:
            await websocket.send_json(
                {"event": "error", "detail": "Expected {'action': 'join'|'leave', 'site_id': <id>}"}
            )
            continue

        if action == JOIN_ACTION:
            try:
                hub.subscribe(site_id, subscriber)
            except DependencyFailureError as exc:
                await websocket.send_json({"event": "error", "detail": exc.message})
                continue
            await websocket.send_json({"event": "subscribed", "site_id": site_id})
        else:
            hub.unsubscribe(site_id, subscriber)
            await websocket.send_json({"event": "unsubscribed", "site_id": site_id})


async def _forward_updates(websocket: WebSocket, subscriber: QueueSubscriber) -> None:
    while True:
        message = await subscriber.next_message()
        await websocket.send_json(message)


@router.websocket("/ws/availability")
async def availability_stream(websocket: WebSocket) -> None:
    hub: SubscriptionHub | None = getattr(websocket.app.state, "subscription_hub", None)
    if hub is None or not hub.is_open:
        await websocket.close(code=1013)
        return

    await websocket.accept()
    subscriber = QueueSubscriber(asyncio.get_running_loop())
    receiver = asyncio.create_task(_receive_commands(websocket, hub, subscriber))
    sender = asyncio.create_task(_forward_updates(websocket, subscriber))
    try:
        done, _pending = await asyncio.wait(
            {receiver, sender},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Availability stream closed with error: %s", exc)
    finally:
        hub.unsubscribe_all(subscriber)
        for task in (receiver, sender):
            task.cancel()
        logger.debug("Availability stream disconnected")
        await asyncio.gather(receiver, sender, return_exceptions=True)
