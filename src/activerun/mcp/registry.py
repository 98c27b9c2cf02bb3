"""Tool discovery, namespacing and resolution across providers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from activerun.errors import AmbiguousToolError, ProviderConnectionError, UnknownToolError
from activerun.logging import get_logger
from activerun.mcp.connection import ProviderConnection
from activerun.mcp.transport import infer_transport_kind
from activerun.mcp.types import ToolDescriptor

if TYPE_CHECKING:
    from activerun.config.schema import ProviderConfig

log = get_logger("mcp.registry")

ConnectionFactory = Callable[["ProviderConfig"], ProviderConnection]


@dataclass(frozen=True)
class ToolCatalog:
    """Immutable snapshot of every available tool.

    A running loop keeps the snapshot it was handed; the registry replaces
    its reference on reconfiguration instead of mutating this object.
    """

    tools: Mapping[str, ToolDescriptor] = field(default_factory=lambda: MappingProxyType({}))
    connections: Mapping[str, ProviderConnection] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def build(
        cls,
        tools: Iterable[ToolDescriptor],
        connections: Mapping[str, ProviderConnection],
    ) -> ToolCatalog:
        by_name: dict[str, ToolDescriptor] = {}
        for tool in tools:
            if tool.name in by_name:
                log.warning("Duplicate tool '%s' ignored", tool.name)
                continue
            by_name[tool.name] = tool
        return cls(MappingProxyType(by_name), MappingProxyType(dict(connections)))

    def __len__(self) -> int:
        return len(self.tools)

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(self.tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self.tools

    def names(self) -> list[str]:
        """Qualified names in sorted order."""
        return sorted(self.tools)

    def resolve(self, name: str) -> ToolDescriptor:
        """Find the descriptor for a qualified or unqualified name.

        Raises:
            UnknownToolError: Nothing matches.
            AmbiguousToolError: The unqualified name exists in several providers.
        """
        exact = self.tools.get(name)
        if exact is not None:
            return exact

        matches = [tool for tool in self.tools.values() if tool.tool_name == name]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise UnknownToolError(name)
        raise AmbiguousToolError(name, [tool.name for tool in matches])

    def connection_for(self, tool: ToolDescriptor) -> ProviderConnection | None:
        return self.connections.get(tool.provider)

    def to_list(self) -> list[dict[str, Any]]:
        return [self.tools[name].to_dict() for name in self.names()]


class ToolRegistry:
    """Owns provider connections and the current tool catalog.

    Providers are connected independently; one failing is logged and
    skipped. Every change builds a new ToolCatalog and swaps it in with a
    single assignment.
    """

    def __init__(self, connection_factory: ConnectionFactory = ProviderConnection) -> None:
        self._connection_factory = connection_factory
        self._catalog = ToolCatalog()
        self._configs: dict[str, ProviderConfig] = {}
        self._connections: dict[str, ProviderConnection] = {}
        self._tools: dict[str, list[ToolDescriptor]] = {}
        self._failed: dict[str, ProviderConnection] = {}
        self._runtime_disabled: set[str] = set()
        self._force_reconnect: set[str] = set()
        # Serializes writers; readers only ever touch self._catalog
        self._lock = asyncio.Lock()

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    def resolve(self, name: str) -> ToolDescriptor:
        return self._catalog.resolve(name)

    async def start(self, configs: Iterable[ProviderConfig]) -> ToolCatalog:
        """Connect every enabled provider and publish the first catalog."""
        return await self.reconfigure(configs)

    async def reconfigure(self, configs: Iterable[ProviderConfig]) -> ToolCatalog:
        """Bring connections in line with ``configs`` and swap the catalog.

        Providers whose config is unchanged stay connected. Removed or
        changed providers are closed once the new catalog is in place.
        """
        async with self._lock:
            self._configs = {c.name: c for c in configs}
            wanted = {
                name: config
                for name, config in self._configs.items()
                if not config.disabled and name not in self._runtime_disabled
            }

            kept = {
                name: conn
                for name, conn in self._connections.items()
                if name in wanted
                and name not in self._force_reconnect
                and conn.config == wanted[name]
                and conn.is_ready
            }
            to_connect = [config for name, config in wanted.items() if name not in kept]
            self._force_reconnect.clear()

            results = await asyncio.gather(
                *(self._connect_one(config) for config in to_connect),
                return_exceptions=True,
            )

            connections = dict(kept)
            tools = {name: self._tools.get(name, []) for name in kept}
            self._failed = {}
            for config, result in zip(to_connect, results):
                if isinstance(result, BaseException):
                    log.error("Provider '%s' failed to initialize: %s", config.name, result)
                    continue
                conn, listed = result
                if conn.is_ready:
                    connections[config.name] = conn
                    tools[config.name] = listed
                else:
                    self._failed[config.name] = conn

            stale = [
                conn
                for name, conn in self._connections.items()
                if connections.get(name) is not conn
            ]

            self._connections = connections
            self._tools = tools
            self._catalog = ToolCatalog.build(
                (tool for listed in tools.values() for tool in listed),
                connections,
            )

            if stale:
                await asyncio.gather(*(conn.close() for conn in stale), return_exceptions=True)

            log.info(
                "Tool catalog updated: %d tools from %d/%d providers",
                len(self._catalog),
                len(connections),
                len(wanted),
            )
            return self._catalog

    async def _connect_one(
        self, config: ProviderConfig
    ) -> tuple[ProviderConnection, list[ToolDescriptor]]:
        conn = self._connection_factory(config)
        try:
            await conn.connect()
            listed = await conn.list_tools()
        except ProviderConnectionError as e:
            log.error("%s", e)
            await conn.close()
            return conn, []
        except Exception as e:
            log.error("Failed to list tools for provider '%s': %s", config.name, e)
            conn.error_message = str(e)
            await conn.close()
            return conn, []

        log.info("Provider '%s' exposes %d tools", config.name, len(listed))
        return conn, listed

    async def disable_provider(self, name: str) -> ToolCatalog:
        """Drop a provider's tools and connection until re-enabled."""
        self._runtime_disabled.add(name)
        return await self.reconfigure(list(self._configs.values()))

    async def enable_provider(self, name: str) -> ToolCatalog:
        self._runtime_disabled.discard(name)
        return await self.reconfigure(list(self._configs.values()))

    async def restart_provider(self, name: str) -> ToolCatalog:
        """Reconnect a provider even if its config did not change."""
        if name not in self._configs:
            raise KeyError(f"Provider '{name}' is not configured")
        self._force_reconnect.add(name)
        return await self.reconfigure(list(self._configs.values()))

    def provider_status(self) -> list[dict[str, Any]]:
        """One entry per configured provider."""
        statuses: list[dict[str, Any]] = []
        for name, config in sorted(self._configs.items()):
            conn = self._connections.get(name) or self._failed.get(name)
            try:
                transport: str | None = infer_transport_kind(config).value
            except ValueError:
                transport = config.transport
            statuses.append({
                "name": name,
                "transport": transport,
                "status": conn.status.value if conn else "closed",
                "tools": len(self._tools.get(name, [])),
                "error": conn.error_message if conn else None,
                "disabled": config.disabled or name in self._runtime_disabled,
            })
        return statuses

    async def close(self) -> None:
        """Close every provider connection and empty the catalog."""
        async with self._lock:
            connections = list(self._connections.values())
            self._connections = {}
            self._tools = {}
            self._failed = {}
            self._catalog = ToolCatalog()
            await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)
