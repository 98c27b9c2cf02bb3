"""API server lifecycle management."""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import TYPE_CHECKING, Any

from activerun.logging import get_logger

if TYPE_CHECKING:
    import uvicorn
    from fastapi import FastAPI

    from activerun.engine import Engine

log = get_logger("server")

# Server state
_server: uvicorn.Server | None = None
_server_task: asyncio.Task[None] | None = None
_app: FastAPI | None = None
_server_address: tuple[str, int] | None = None
_start_time: float | None = None


def is_server_running() -> bool:
    return _server_task is not None and not _server_task.done()


def get_server_status() -> dict[str, Any]:
    connections = _app.state.connections.get_connection_count() if _app is not None else 0
    return {
        "running": is_server_running(),
        "host": _server_address[0] if _server_address else None,
        "port": _server_address[1] if _server_address else None,
        "uptime": time.time() - _start_time if _start_time else 0,
        "connections": connections,
    }


async def start_server(engine: Engine, host: str = "127.0.0.1", port: int = 8765) -> None:
    """Serve the API for ``engine`` in a background task.

    Args:
        engine: A started Engine.
        host: Interface to bind.
        port: Port to listen on.
    """
    global _server, _server_task, _app, _server_address, _start_time

    if is_server_running():
        raise RuntimeError(f"Server already running on port {_server_address[1]}")  # type: ignore[index]

    # Import here to keep CLI startup fast
    import uvicorn

    from activerun.server.routes import create_app

    _app = create_app(engine)
    config = uvicorn.Config(
        _app,
        host=host,
        port=port,
        log_level="warning",
        access_log=False,
    )
    _server = uvicorn.Server(config)
    _server_task = asyncio.create_task(_server.serve())
    _server_address = (host, port)
    _start_time = time.time()

    log.info("API listening on http://%s:%d", host, port)


async def wait_server() -> None:
    """Block until the server task exits."""
    if _server_task is not None:
        with contextlib.suppress(asyncio.CancelledError):
            await _server_task


async def stop_server() -> None:
    """Close websocket clients and shut the server down."""
    global _server, _server_task, _app, _server_address, _start_time

    if not _server_task:
        return

    if _app is not None:
        await _app.state.connections.close_all("Server shutting down")

    if _server is not None:
        _server.should_exit = True
    try:
        await asyncio.wait_for(asyncio.shield(_server_task), timeout=5.0)
    except TimeoutError:
        _server_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _server_task
    except asyncio.CancelledError:
        pass

    log.info("API stopped (was on port %d)", _server_address[1] if _server_address else 0)

    _server = None
    _server_task = None
    _app = None
    _server_address = None
    _start_time = None
