"""Remote API for activerun: REST commands plus a WebSocket progress stream.

Usage:
    from activerun.server import start_server, stop_server

    await start_server(engine, host="127.0.0.1", port=8765)
    ...
    await stop_server()
"""

from activerun.server.routes import create_app
from activerun.server.server import (
    get_server_status,
    is_server_running,
    start_server,
    stop_server,
    wait_server,
)
from activerun.server.websocket import ConnectionManager

__all__ = [
    "ConnectionManager",
    "create_app",
    "get_server_status",
    "is_server_running",
    "start_server",
    "stop_server",
    "wait_server",
]
