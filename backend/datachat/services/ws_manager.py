"""Status side-channel — session-scoped WebSocket registry.

Tracks live WebSocket connections keyed by:
  • session_id — for workflow status updates  (/ws/status/{session_id})

Multiple browser tabs or reconnects for the same session are supported; each
produces an independent WebSocket entry in the session's list.

The registry is not a module-level singleton: the application creates one
in its lifespan and hands each workflow run a :class:`StatusNotifier` bound
to the turn's session.  Delivery is best-effort — a failed or dropped
notification never reaches the workflow.

Usage::

    registry = StatusRegistry()
    await registry.register(session_id, websocket)      # on connect
    notifier = registry.notifier(session_id)
    notifier.notify("Generating analysis code...")     # fire-and-forget
    registry.deregister(session_id, websocket)         # on disconnect
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class StatusRegistry:
    """WebSocket connection registry for status notifications.

    asyncio single-threaded event loop means ordinary dicts are safe here;
    sessions never share entries so no cross-session locking is required.
    """

    MAX_CONNECTIONS_PER_SESSION = 5

    def __init__(self) -> None:
        # session_id → list of active WebSocket objects
        self._connections: Dict[str, List[WebSocket]] = defaultdict(list)

    # ── Connection lifecycle ───────────────────────────────────────

    async def register(self, session_id: str, ws: WebSocket) -> bool:
        """Accept and register a session-scoped WebSocket.

        Returns False (and closes the socket) when the session already has
        MAX_CONNECTIONS_PER_SESSION live connections.
        """
        await ws.accept()
        current = len(self._connections.get(session_id, []))
        if current >= self.MAX_CONNECTIONS_PER_SESSION:
            await ws.send_text('{"type":"error","reason":"Too many connections"}')
            await ws.close(code=4008)
            logger.warning(
                "WS rejected: session=%s exceeded max connections (%d)",
                session_id, self.MAX_CONNECTIONS_PER_SESSION,
            )
            return False
        self._connections[session_id].append(ws)
        logger.info(
            "WS connect: session=%s  total_session_conns=%d",
            session_id, len(self._connections[session_id]),
        )
        return True

    def deregister(self, session_id: str, ws: WebSocket) -> None:
        """Remove a session WebSocket (call on close or error)."""
        conns = self._connections.get(session_id, [])
        if ws in conns:
            conns.remove(ws)
        if not conns:
            self._connections.pop(session_id, None)
        logger.info(
            "WS disconnect: session=%s  remaining=%d",
            session_id, len(self._connections.get(session_id, [])),
        )

    # ── Sending ────────────────────────────────────────────────────

    async def send(self, session_id: str, payload: Dict[str, Any]) -> int:
        """Push a JSON payload to every WebSocket registered for *session_id*.

        Returns the number of connections that received the message.
        Dead connections are pruned automatically.
        """
        conns = self._connections.get(session_id)
        if not conns:
            return 0

        text = json.dumps(payload)
        sent = 0
        dead: List[WebSocket] = []

        for ws in list(conns):
            try:
                await ws.send_text(text)
                sent += 1
            except Exception as exc:
                logger.debug(
                    "WS send failed (session=%s): %s — pruning connection",
                    session_id, exc,
                )
                dead.append(ws)

        for ws in dead:
            self.deregister(session_id, ws)

        return sent

    def notifier(self, session_id: str) -> "StatusNotifier":
        """Return a handle that publishes status messages for one session."""
        return StatusNotifier(self, session_id)

    # ── Presence queries ───────────────────────────────────────────

    def is_connected(self, session_id: str) -> bool:
        return bool(self._connections.get(session_id))

    def stats(self) -> Dict[str, int]:
        return {
            "status_connections": sum(len(v) for v in self._connections.values()),
            "sessions_listening": len(self._connections),
        }


class StatusNotifier:
    """Fire-and-forget status publisher bound to a single session."""

    def __init__(self, registry: StatusRegistry, session_id: str) -> None:
        self._registry = registry
        self.session_id = session_id
        self._pending: Set[asyncio.Task] = set()

    def notify(self, message: str) -> None:
        """Schedule a ``{"type": "status"}`` message without awaiting it."""
        if not self._registry.is_connected(self.session_id):
            return
        try:
            task = asyncio.get_running_loop().create_task(
                self._registry.send(self.session_id, {"type": "status", "message": message})
            )
        except RuntimeError as exc:
            logger.debug("Status notification dropped (session=%s): %s", self.session_id, exc)
            return
        # Keep a strong reference until the send finishes
        self._pending.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Status notification failed (session=%s): %s", self.session_id, exc)


class NullNotifier:
    """Notifier used when no status channel is attached to a run."""

    session_id = ""

    def notify(self, message: str) -> None:
        return None
