"""Shared test utilities for activerun tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from mcp import types

from activerun.config.schema import ProviderConfig
from activerun.errors import ProviderConnectionError
from activerun.mcp.registry import ToolCatalog
from activerun.mcp.types import ProviderStatus, ToolCall, ToolDescriptor, qualify
from activerun.session.protocols import Decision, HistoryEntry


def text_result(text: str, is_error: bool = False) -> types.CallToolResult:
    """Build a raw MCP tool result with a single text block."""
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=is_error,
    )


class FakeConnection:
    """Stands in for ProviderConnection without a transport.

    Args:
        config: Provider config; ``config.name`` is the provider id.
        tools: Unqualified tool names the provider lists.
        fail: If set, ``connect()`` fails with this message.
        handler: Optional ``(tool, arguments) -> CallToolResult`` (sync or async).
    """

    def __init__(
        self,
        config: ProviderConfig,
        tools: Iterable[str] = (),
        fail: str | None = None,
        handler: Callable[[str, dict[str, Any]], Any] | None = None,
    ) -> None:
        self.config = config
        self.status = ProviderStatus.CLOSED
        self.error_message: str | None = None
        self.tools = list(tools)
        self.fail = fail
        self.handler = handler
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.close_count = 0

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_ready(self) -> bool:
        return self.status is ProviderStatus.READY

    async def connect(self) -> None:
        if self.fail:
            self.status = ProviderStatus.FAILED
            self.error_message = self.fail
            raise ProviderConnectionError(self.name, self.fail)
        self.status = ProviderStatus.READY

    async def list_tools(self) -> list[ToolDescriptor]:
        return [
            ToolDescriptor(
                name=qualify(self.name, tool),
                description=f"{tool} from {self.name}",
                input_schema={"type": "object"},
                provider=self.name,
            )
            for tool in self.tools
            if tool not in self.config.disabled_tools
        ]

    async def invoke(self, tool_name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        self.calls.append((tool_name, arguments))
        if self.handler is None:
            return text_result(f"{self.name}:{tool_name} ok")
        result = self.handler(tool_name, arguments)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def close(self) -> None:
        self.close_count += 1
        if self.status is not ProviderStatus.FAILED:
            self.status = ProviderStatus.CLOSED


class FakeConnectionFactory:
    """Connection factory for ToolRegistry that builds FakeConnections.

    Tools, failures and handlers are looked up by provider name.
    """

    def __init__(
        self,
        tools: dict[str, Sequence[str]],
        failing: dict[str, str] | None = None,
        handlers: dict[str, Callable[[str, dict[str, Any]], Any]] | None = None,
    ) -> None:
        self.tools = tools
        self.failing = failing or {}
        self.handlers = handlers or {}
        self.created: list[FakeConnection] = []

    def __call__(self, config: ProviderConfig) -> FakeConnection:
        conn = FakeConnection(
            config,
            tools=self.tools.get(config.name, ()),
            fail=self.failing.get(config.name),
            handler=self.handlers.get(config.name),
        )
        self.created.append(conn)
        return conn

    def for_provider(self, name: str) -> list[FakeConnection]:
        return [c for c in self.created if c.name == name]


def provider(name: str, **kwargs: Any) -> ProviderConfig:
    """A stdio provider config with a dummy command."""
    kwargs.setdefault("command", ["fake-server", name])
    return ProviderConfig(name=name, **kwargs)


def make_catalog(**providers: Sequence[str]) -> tuple[ToolCatalog, dict[str, FakeConnection]]:
    """Build a catalog from ready fake connections, e.g. ``make_catalog(fs=["read"])``."""
    connections: dict[str, FakeConnection] = {}
    tools: list[ToolDescriptor] = []
    for name, tool_names in providers.items():
        conn = FakeConnection(provider(name), tools=tool_names)
        conn.status = ProviderStatus.READY
        connections[name] = conn
        tools.extend(
            ToolDescriptor(qualify(name, t), f"{t} from {name}", {"type": "object"}, name)
            for t in tool_names
        )
    return ToolCatalog.build(tools, connections), connections  # type: ignore[arg-type]


class ScriptedDecider:
    """Decision function that replays a list of responses.

    The last response repeats once the script runs out. A response that is
    an exception instance is raised. Every call is recorded.
    """

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, ToolCatalog, tuple[HistoryEntry, ...]]] = []

    async def __call__(
        self,
        request: str,
        catalog: ToolCatalog,
        history: Sequence[HistoryEntry],
    ) -> Any:
        self.calls.append((request, catalog, tuple(history)))
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        return response


def always_call(name: str, **arguments: Any) -> ScriptedDecider:
    """A decider that requests the same tool call forever."""
    return ScriptedDecider(Decision.call(ToolCall(name, arguments)))


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


async def echo_decider(
    request: str, catalog: ToolCatalog, history: Sequence[HistoryEntry]
) -> str:
    """Answers at once by echoing the request."""
    return f"Echo: {request}"


async def failing_decider(
    request: str, catalog: ToolCatalog, history: Sequence[HistoryEntry]
) -> str:
    raise RuntimeError("no model configured")


NOT_A_DECIDER = 42
