"""WebSocket connection tracking and snapshot forwarding."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from activerun.logging import get_logger

if TYPE_CHECKING:
    from fastapi import WebSocket

    from activerun.session.broadcaster import Subscription
    from activerun.session.protocols import ProgressSnapshot

log = get_logger("server.websocket")

ALL_SESSIONS = "*"


def progress_message(snapshot: ProgressSnapshot) -> dict[str, Any]:
    return {"type": "progress", "session_id": snapshot.session_id, "snapshot": snapshot.to_dict()}


class ConnectionManager:
    """Tracks WebSocket clients per watched session.

    Clients watching every run are kept under ``ALL_SESSIONS``.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, channel: str = ALL_SESSIONS) -> None:
        """Accept a new WebSocket connection for a channel."""
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(channel, set()).add(websocket)
        log.debug("Client connected to %s", channel)

    async def disconnect(self, websocket: WebSocket, channel: str = ALL_SESSIONS) -> None:
        async with self._lock:
            if channel in self._connections:
                self._connections[channel].discard(websocket)
                if not self._connections[channel]:
                    del self._connections[channel]
        log.debug("Client disconnected from %s", channel)

    async def forward(self, websocket: WebSocket, subscription: Subscription) -> None:
        """Send every snapshot from ``subscription`` to one client until it ends."""
        async for snapshot in subscription:
            try:
                await websocket.send_json(progress_message(snapshot))
            except Exception as e:
                log.debug("Stopped forwarding to a closed socket: %s", e)
                subscription.close()
                return

    def get_connection_count(self, channel: str | None = None) -> int:
        """Number of connected clients, for one channel or all of them."""
        if channel:
            return len(self._connections.get(channel, set()))
        return sum(len(conns) for conns in self._connections.values())

    async def close_all(self, reason: str = "Server shutting down") -> None:
        """Close all WebSocket connections gracefully."""
        async with self._lock:
            all_connections = [ws for conns in self._connections.values() for ws in conns]
            self._connections.clear()

        for websocket in all_connections:
            with contextlib.suppress(Exception):
                await websocket.close(code=1001, reason=reason)
        log.info("Closed %d websocket connections", len(all_connections))
