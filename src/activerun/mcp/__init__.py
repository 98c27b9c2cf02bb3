"""MCP tool provider support for activerun.

Connects to tool providers (MCP servers) over stdio, websocket,
streamable-http or sse, namespaces their tools as ``provider:tool`` and
invokes them on behalf of agent runs.

    registry = ToolRegistry()
    await registry.start(config.providers)
    invoker = ToolInvoker(registry)
    result = await invoker.invoke(ToolCall("read", {"path": "/tmp/a.txt"}))
    await registry.close()
"""

from activerun.mcp.connection import ProviderConnection
from activerun.mcp.invoker import ToolInvoker
from activerun.mcp.registry import ToolCatalog, ToolRegistry
from activerun.mcp.types import (
    ProviderStatus,
    ToolCall,
    ToolDescriptor,
    ToolResult,
    TransportKind,
    qualify,
)

__all__ = [
    "ProviderConnection",
    "ProviderStatus",
    "ToolCall",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolInvoker",
    "ToolRegistry",
    "ToolResult",
    "TransportKind",
    "qualify",
]
