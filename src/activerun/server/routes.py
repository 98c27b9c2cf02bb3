"""FastAPI routes for the remote API and WebSocket progress stream."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from activerun import __version__
from activerun.logging import get_logger
from activerun.server.websocket import ALL_SESSIONS, ConnectionManager
from activerun.session.session_manager import DEFAULT_CONSUMER

if TYPE_CHECKING:
    from activerun.engine import Engine

log = get_logger("server.routes")


class RunRequest(BaseModel):
    request: str
    conversation_id: str | None = None
    snoozed: bool = False
    max_iterations: int | None = None


def create_app(engine: Engine) -> FastAPI:
    """Create the API application for ``engine``.

    The engine's lifecycle stays with the caller; the app only reads from
    it and forwards commands.
    """
    app = FastAPI(
        title="activerun",
        description="Agent run orchestration API",
        version=__version__,
    )
    app.state.engine = engine
    app.state.connections = ConnectionManager()
    app.state.started_at = time.time()

    _register_routes(app, engine, app.state.connections)
    return app


def _session_or_404(engine: Engine, session_id: str) -> dict[str, Any]:
    snapshot = engine.sessions.get(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return snapshot.to_dict()


def _require(found: bool, session_id: str) -> None:
    if not found:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")


def _register_routes(app: FastAPI, engine: Engine, connections: ConnectionManager) -> None:
    @app.get("/api/status")
    async def api_status() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "uptime": time.time() - app.state.started_at,
            "connections": connections.get_connection_count(),
            **engine.status(),
        }

    @app.get("/api/tools")
    async def api_tools() -> list[dict[str, Any]]:
        return engine.tools()

    @app.get("/api/providers")
    async def api_providers() -> list[dict[str, Any]]:
        return engine.registry.provider_status()

    @app.get("/api/sessions")
    async def api_sessions() -> list[dict[str, Any]]:
        return [s.to_dict() for s in engine.sessions.active_sessions()]

    @app.get("/api/sessions/recent")
    async def api_recent_sessions(limit: int | None = None) -> list[dict[str, Any]]:
        return [s.to_dict() for s in engine.sessions.recent_sessions(limit)]

    @app.get("/api/sessions/{session_id}")
    async def api_session(session_id: str) -> dict[str, Any]:
        return _session_or_404(engine, session_id)

    @app.post("/api/runs")
    async def api_submit(body: RunRequest) -> dict[str, Any]:
        if not body.request.strip():
            raise HTTPException(status_code=400, detail="Request must not be empty")
        session_id = engine.submit(
            body.request,
            conversation_id=body.conversation_id,
            snoozed=body.snoozed,
            max_iterations=body.max_iterations,
        )
        return {"session_id": session_id}

    @app.post("/api/sessions/{session_id}/focus")
    async def api_focus_session(session_id: str, consumer: str = DEFAULT_CONSUMER) -> dict[str, Any]:
        _require(engine.sessions.focus(session_id, consumer), session_id)
        return {"consumer": consumer, "session_id": session_id}

    @app.post("/api/sessions/{session_id}/snooze")
    async def api_snooze(session_id: str) -> dict[str, Any]:
        _require(engine.sessions.snooze(session_id), session_id)
        return _session_or_404(engine, session_id)

    @app.post("/api/sessions/{session_id}/unsnooze")
    async def api_unsnooze(session_id: str) -> dict[str, Any]:
        _require(engine.sessions.unsnooze(session_id), session_id)
        return _session_or_404(engine, session_id)

    @app.post("/api/sessions/{session_id}/dismiss")
    async def api_dismiss(session_id: str) -> dict[str, Any]:
        _require(engine.sessions.dismiss(session_id), session_id)
        return {"dismissed": session_id, "focused": engine.sessions.focused()}

    @app.post("/api/sessions/{session_id}/cancel")
    async def api_cancel(session_id: str) -> dict[str, Any]:
        _require(engine.cancel(session_id), session_id)
        return {"cancelled": session_id}

    @app.get("/api/focus")
    async def api_focus(consumer: str = DEFAULT_CONSUMER) -> dict[str, Any]:
        return {"consumer": consumer, "session_id": engine.sessions.focused(consumer)}

    @app.delete("/api/focus")
    async def api_clear_focus(consumer: str = DEFAULT_CONSUMER) -> dict[str, Any]:
        engine.sessions.focus(None, consumer)
        return {"consumer": consumer, "session_id": None}

    @app.post("/api/emergency-stop")
    async def api_emergency_stop() -> dict[str, Any]:
        return {
            "cancelled": engine.emergency_stop(),
            "kill_switch_enabled": engine.config.agent.kill_switch_enabled,
        }

    @app.websocket("/ws")
    async def websocket_all(websocket: WebSocket) -> None:
        await _serve_socket(websocket, engine, connections, None)

    @app.websocket("/ws/{session_id}")
    async def websocket_session(websocket: WebSocket, session_id: str) -> None:
        await _serve_socket(websocket, engine, connections, session_id)


async def _serve_socket(
    websocket: WebSocket,
    engine: Engine,
    connections: ConnectionManager,
    session_id: str | None,
) -> None:
    """Send the current state, then stream progress until the client leaves."""
    channel = session_id or ALL_SESSIONS
    await connections.connect(websocket, channel)
    # Subscribe before building the init message so nothing falls in between
    subscription = engine.broadcaster.subscribe(session_id)
    forwarder: asyncio.Task[None] | None = None

    try:
        if session_id is None:
            sessions = [s.to_dict() for s in engine.sessions.active_sessions()]
        else:
            snapshot = engine.sessions.get(session_id)
            sessions = [snapshot.to_dict()] if snapshot else []
        await websocket.send_json({
            "type": "init",
            "session_id": session_id,
            "focused": engine.sessions.focused(),
            "sessions": sessions,
        })

        forwarder = asyncio.create_task(connections.forward(websocket, subscription))

        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                break
            if data == "ping":
                await websocket.send_text("pong")
    finally:
        subscription.close()
        if forwarder is not None:
            forwarder.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await forwarder
        await connections.disconnect(websocket, channel)
