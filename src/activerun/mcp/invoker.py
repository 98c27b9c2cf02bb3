"""Runs tool calls against provider connections."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from mcp import types

from activerun.errors import ToolResolutionError
from activerun.logging import get_logger
from activerun.mcp.types import ToolCall, ToolResult, new_call_id

if TYPE_CHECKING:
    from activerun.mcp.registry import ToolCatalog, ToolRegistry

log = get_logger("mcp.invoker")


def normalize_content(blocks: list[Any]) -> list[dict[str, Any]]:
    """Convert MCP content blocks into plain dicts."""
    content: list[dict[str, Any]] = []
    for block in blocks:
        if isinstance(block, types.TextContent):
            content.append({"type": "text", "text": block.text})
        elif isinstance(block, types.ImageContent):
            content.append({
                "type": "image",
                "data": block.data,
                "mime_type": block.mimeType,
            })
        elif isinstance(block, types.EmbeddedResource):
            res = block.resource
            content.append({
                "type": "resource",
                "uri": str(res.uri),
                "text": getattr(res, "text", None),
            })
        elif isinstance(block, types.ResourceLink):
            content.append({"type": "resource_link", "uri": str(block.uri), "name": block.name})
        elif isinstance(block, dict):
            content.append(block)
        else:
            content.append({"type": "text", "text": str(block)})
    return content


class ToolInvoker:
    """Turns a ToolCall into a ToolResult. Never raises.

    Resolution problems and provider errors come back as failed results so
    the decision function can see them and correct itself. No retries.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self._registry = registry

    async def invoke(self, call: ToolCall, catalog: ToolCatalog | None = None) -> ToolResult:
        """Run ``call`` against ``catalog`` (the registry's current one by default)."""
        catalog = catalog if catalog is not None else self._registry.catalog
        call_id = new_call_id()

        try:
            tool = catalog.resolve(call.name)
        except ToolResolutionError as e:
            available = ", ".join(catalog.names()) or "none"
            message = (
                f"{e}. Available tools: {available}. "
                "Make sure to use the exact tool name including server prefix."
            )
            log.warning("Could not resolve tool '%s': %s", call.name, e)
            return ToolResult.failure(message, call_id)

        connection = catalog.connection_for(tool)
        if connection is None:
            return ToolResult.failure(
                f"Tool {tool.name} is unavailable: provider '{tool.provider}' is not connected",
                call_id,
            )

        try:
            raw = await connection.invoke(tool.tool_name, dict(call.arguments))
            return _to_result(tool.name, raw, call_id)
        except Exception as e:
            log.warning("Tool call failed: %s: %s", tool.name, e)
            return ToolResult.failure(
                f"Error executing tool {tool.name}: {str(e) or type(e).__name__}", call_id
            )


def _to_result(name: str, raw: types.CallToolResult, call_id: str) -> ToolResult:
    content = normalize_content(raw.content)
    if raw.isError:
        text = "\n".join(c["text"] for c in content if c.get("type") == "text" and c.get("text"))
        log.debug("Tool %s reported an error: %s", name, text)
        return ToolResult(
            success=False,
            content=content,
            error=text or f"Tool {name} reported an error",
            call_id=call_id,
            structured_content=raw.structuredContent,
        )

    return ToolResult(
        success=True,
        content=content,
        call_id=call_id,
        structured_content=raw.structuredContent,
    )
