"""WebSocket signaling endpoint."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.gateway import SignalingGateway, SignalingSession
from ..services.signaling import SignalingConnection

logger = logging.getLogger(__name__)

router = APIRouter()


async def _dispatch(
    session: SignalingSession,
    connection: SignalingConnection,
    inbox: asyncio.Queue[dict[str, Any]],
) -> None:
    """Handle queued frames one at a time, in arrival order."""

    while True:
        message = await inbox.get()
        request_id = message.get("id")
        event = message.get("event")
        if not isinstance(event, str):
            if request_id is not None:
                await connection.deliver({"id": request_id, "data": {"error": "missing event"}})
            continue

        response = await session.handle(event, message.get("data"))
        if request_id is not None:
            await connection.deliver({"id": request_id, "event": event, "data": response})


@router.websocket("/signaling")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Request/reply plus push-event channel for one peer.

    Frames are JSON objects ``{"id", "event", "data"}``. Frames carrying an
    ``id`` get exactly one reply with the same ``id``; frames without one are
    fire-and-forget. Server pushes carry only ``event`` and ``data``.

    Requests run in a separate task so a disconnect is seen right away; the
    request still in flight is cancelled before the peer is torn down.
    """

    gateway: SignalingGateway = websocket.app.state.gateway
    connection_id = str(uuid4())
    await websocket.accept()

    connection = SignalingConnection(connection_id=connection_id, send=websocket.send_json)
    session = gateway.connect(connection)
    inbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    dispatcher = asyncio.create_task(_dispatch(session, connection, inbox))

    try:
        await connection.deliver({"event": "connected", "data": {"id": connection_id}})
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.debug("Ignoring non-JSON frame from %s", connection_id)
                continue
            if isinstance(message, dict):
                inbox.put_nowait(message)
    except WebSocketDisconnect:
        pass
    finally:
        dispatcher.cancel()
        (outcome,) = await asyncio.gather(dispatcher, return_exceptions=True)
        if isinstance(outcome, Exception):
            logger.debug("Dispatcher for %s stopped: %s", connection_id, outcome)
        await gateway.disconnect(session)
