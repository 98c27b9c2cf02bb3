"""Tool provider type definitions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

QUALIFIER = ":"


class ProviderStatus(Enum):
    """Status of a tool provider connection."""

    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


class TransportKind(Enum):
    """How a provider is reached."""

    STDIO = "stdio"
    WEBSOCKET = "websocket"
    STREAMABLE_HTTP = "streamable-http"
    SSE = "sse"


def qualify(provider: str, tool_name: str) -> str:
    """Build the catalog name ``provider:tool``."""
    return f"{provider}{QUALIFIER}{tool_name}"


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """A tool exposed by a provider, stored under its qualified name.

    ``provider`` names the owning connection for lookup only; the registry
    owns both descriptors and connections.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    provider: str

    @property
    def tool_name(self) -> str:
        """The provider's own (unqualified) name for this tool."""
        return self.name.split(QUALIFIER, 1)[1] if QUALIFIER in self.name else self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
            "provider": self.provider,
        }


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A request to run a tool. ``name`` may be qualified or not."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.arguments is None:
            object.__setattr__(self, "arguments", {})

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Canonical result of a tool invocation.

    ``error`` is always a non-empty string when ``success`` is False.
    """

    success: bool
    content: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    call_id: str = field(default_factory=new_call_id)
    structured_content: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Tool call failed")

    @classmethod
    def failure(cls, error: str, call_id: str | None = None) -> ToolResult:
        return cls(
            success=False,
            content=[{"type": "text", "text": error}],
            error=error,
            call_id=call_id or new_call_id(),
        )

    def text(self) -> str:
        """Extract text content from the result."""
        return "\n".join(
            item.get("text", "") for item in self.content if item.get("type") == "text"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "error": self.error,
            "call_id": self.call_id,
            "structured_content": self.structured_content,
        }

    def __repr__(self) -> str:
        if not self.success:
            return f"ToolResult(error={self.error!r})"
        return f"ToolResult(content={self.content!r})"
