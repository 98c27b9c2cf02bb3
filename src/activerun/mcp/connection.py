"""A single tool provider connection."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any

from mcp import types
from mcp.client.session import ClientSession

from activerun.errors import ConnectionTimeout, ProviderConnectionError
from activerun.logging import get_logger
from activerun.mcp.transport import create_transport, infer_transport_kind
from activerun.mcp.types import ProviderStatus, ToolDescriptor, TransportKind, qualify

if TYPE_CHECKING:
    from activerun.config.schema import ProviderConfig

log = get_logger("mcp.connection")

DEFAULT_CLOSE_TIMEOUT = 5.0


class ProviderConnection:
    """Holds one live MCP session to a tool provider.

    The transport and session contexts are entered and exited by a
    dedicated lifecycle task, since the SDK's task groups must be closed
    from the task that opened them. ``connect()`` waits for that task to
    report readiness under the configured timeout; ``close()`` signals it to
    unwind, which for stdio terminates the spawned subprocess.
    """

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.status = ProviderStatus.CLOSED
        self.session: ClientSession | None = None
        self.error_message: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._ready: asyncio.Future[None] | None = None
        self._stop = asyncio.Event()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def kind(self) -> TransportKind:
        return infer_transport_kind(self.config)

    @property
    def is_ready(self) -> bool:
        return self.status is ProviderStatus.READY and self.session is not None

    async def connect(self) -> None:
        """Open the transport and initialize the MCP session.

        Raises:
            ConnectionTimeout: If the provider is not ready within its timeout.
            ProviderConnectionError: For any other connection failure.
        """
        if self.is_ready:
            return

        self.status = ProviderStatus.CONNECTING
        self.error_message = None
        self._stop = asyncio.Event()
        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._lifecycle(), name=f"provider:{self.name}")

        try:
            async with asyncio.timeout(self.config.timeout):
                await self._ready
        except TimeoutError:
            await self._abort()
            self._fail(f"connection timeout after {self.config.timeout:g}s")
            raise ConnectionTimeout(self.name, self.config.timeout) from None
        except Exception as e:
            await self._abort()
            self._fail(str(e) or type(e).__name__)
            raise ProviderConnectionError(self.name, self.error_message or "") from e

        log.info("Connected to provider '%s' over %s", self.name, self.kind.value)

    async def _lifecycle(self) -> None:
        ready = self._ready
        try:
            async with AsyncExitStack() as stack:
                transport = await create_transport(self.config)
                streams = await stack.enter_async_context(transport)
                session = ClientSession(streams[0], streams[1])
                await stack.enter_async_context(session)
                await session.initialize()

                self.session = session
                self.status = ProviderStatus.READY
                if ready is not None and not ready.done():
                    ready.set_result(None)

                await self._stop.wait()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if ready is not None and not ready.done():
                ready.set_exception(e)
            elif self._stop.is_set():
                log.debug("Provider '%s' raised while closing: %s", self.name, e)
            else:
                log.error("Provider '%s' connection dropped: %s", self.name, e)
                self._fail(str(e))
        finally:
            self.session = None
            if self.status is ProviderStatus.READY:
                self.status = ProviderStatus.CLOSED

    def _fail(self, message: str) -> None:
        self.status = ProviderStatus.FAILED
        self.error_message = message
        log.error("Failed to connect to provider '%s': %s", self.name, message)

    async def _abort(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._task
        self._task = None

    async def list_tools(self) -> list[ToolDescriptor]:
        """List the provider's tools under their qualified names."""
        if not self.is_ready:
            raise ProviderConnectionError(self.name, "not connected")

        result = await self.session.list_tools()  # type: ignore[union-attr]
        disabled = set(self.config.disabled_tools)
        return [
            ToolDescriptor(
                name=qualify(self.name, t.name),
                description=t.description or "",
                input_schema=t.inputSchema,
                provider=self.name,
            )
            for t in result.tools
            if t.name not in disabled
        ]

    async def invoke(self, tool_name: str, arguments: dict[str, Any]) -> types.CallToolResult:
        """Call a tool by its unqualified name and return the raw MCP result.

        Safe to call concurrently; the provider serializes if it needs to.
        """
        if not self.is_ready:
            raise ProviderConnectionError(self.name, "not connected")
        return await self.session.call_tool(tool_name, arguments)  # type: ignore[union-attr]

    async def close(self, timeout: float = DEFAULT_CLOSE_TIMEOUT) -> None:
        """Release the session and transport. Idempotent."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            self._stop.set()
            try:
                async with asyncio.timeout(timeout):
                    await asyncio.shield(task)
            except TimeoutError:
                log.warning("Provider '%s' did not close in %.1fs, cancelling", self.name, timeout)
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
            except Exception as e:
                log.warning("Error closing provider '%s': %s", self.name, e)

        self.session = None
        if self.status is not ProviderStatus.FAILED:
            self.status = ProviderStatus.CLOSED
        log.info("Disconnected from provider '%s'", self.name)

    def __repr__(self) -> str:
        return f"<ProviderConnection '{self.name}' {self.status.value}>"
