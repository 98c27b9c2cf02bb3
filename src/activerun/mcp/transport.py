"""MCP transport factory for stdio, websocket, streamable-http and sse."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, AsyncContextManager

from activerun.config.secrets import expand_references
from activerun.mcp.types import TransportKind

if TYPE_CHECKING:
    from activerun.config.schema import ProviderConfig


def _expand_env_vars(env: dict[str, str]) -> dict[str, str]:
    """Resolve ``${VAR}`` references in env or header values."""
    return {key: expand_references(value) for key, value in env.items()}


def infer_transport_kind(config: ProviderConfig) -> TransportKind:
    """Pick the transport for a provider.

    An explicit ``transport`` wins. Otherwise a command means stdio, a
    ws:// or wss:// url means websocket and any other url means
    streamable-http.

    Raises:
        ValueError: If the kind is unknown or nothing identifies one.
    """
    if config.transport:
        try:
            return TransportKind(config.transport)
        except ValueError:
            raise ValueError(
                f"Unknown transport: {config.transport}"
            ) from None
    if config.command:
        return TransportKind.STDIO
    if config.url:
        if config.url.startswith(("ws://", "wss://")):
            return TransportKind.WEBSOCKET
        return TransportKind.STREAMABLE_HTTP
    raise ValueError(
        f"Provider '{config.name}' needs either 'command' or 'url'"
    )


async def create_transport(
    config: ProviderConfig,
) -> AsyncContextManager[tuple[Any, ...]]:
    """Create the transport context for a provider.

    Returns:
        Async context manager yielding a tuple whose first two items are the
        read and write streams. For stdio the context owns the spawned
        subprocess and terminates it on exit.

    Raises:
        ValueError: If the transport kind is invalid or required fields are missing
    """
    kind = infer_transport_kind(config)

    if kind is TransportKind.STDIO:
        if not config.command:
            raise ValueError(f"stdio transport requires 'command' for provider '{config.name}'")

        from mcp.client.stdio import StdioServerParameters, stdio_client

        # Config env takes precedence over the inherited environment
        merged_env = dict(os.environ)
        merged_env.update(_expand_env_vars(config.env))

        params = StdioServerParameters(
            command=config.command[0],
            args=config.command[1:] + config.args,
            env=merged_env,
        )
        return stdio_client(params)

    if not config.url:
        raise ValueError(f"{kind.value} transport requires 'url' for provider '{config.name}'")

    headers = {k: v for k, v in _expand_env_vars(config.headers).items() if v}

    if kind is TransportKind.WEBSOCKET:
        from mcp.client.websocket import websocket_client

        return websocket_client(config.url)

    if kind is TransportKind.STREAMABLE_HTTP:
        from mcp.client.streamable_http import streamablehttp_client

        return streamablehttp_client(config.url, headers=headers or None)

    from mcp.client.sse import sse_client

    return sse_client(config.url, headers=headers or None, timeout=config.timeout)
