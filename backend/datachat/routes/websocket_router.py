"""WebSocket endpoints.

``/ws/status/{session_id}``
    Receives a ``status`` event on entry to every workflow step of a chat
    turn for that session.  Any number of tabs (up to the registry's
    per-session limit) can subscribe.

Message schema
--------------
All messages are JSON objects with a mandatory ``type`` discriminator:

.. code-block:: json

    {"type": "connected", "channel": "status", "session_id": "..."}
    {"type": "status", "message": "Executing code in secure sandbox..."}
    {"type": "ping"}            (keepalive sent every 30 s by the server)
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from datachat.services.ws_manager import StatusRegistry

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])

_PING_INTERVAL = 30  # seconds


@router.websocket("/ws/status/{session_id}")
async def ws_status(websocket: WebSocket, session_id: str):
    """Status channel for one session's workflow progress."""
    registry: StatusRegistry = websocket.app.state.status_registry

    if not await registry.register(session_id, websocket):
        return
    logger.info("WS /ws/status/%s connected", session_id)

    try:
        await websocket.send_text(json.dumps({
            "type": "connected",
            "channel": "status",
            "session_id": session_id,
        }))

        # Keepalive + receive loop; the client can disconnect at any time.
        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=_PING_INTERVAL)
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))

            except asyncio.TimeoutError:
                if websocket.client_state == WebSocketState.CONNECTED:
                    await websocket.send_text(json.dumps({"type": "ping"}))
                else:
                    break

    except WebSocketDisconnect:
        logger.info("WS /ws/status/%s disconnected", session_id)
    except Exception as exc:
        logger.warning("WS /ws/status/%s error: %s", session_id, exc)
    finally:
        registry.deregister(session_id, websocket)
