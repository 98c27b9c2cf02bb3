"""Configuration schema dataclasses for activerun.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_MAX_ITERATIONS = 10
MIN_MAX_ITERATIONS = 1
MAX_MAX_ITERATIONS = 20
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_GRACE_WINDOW = 5.0


@dataclass
class AgentConfig:
    """Agent loop configuration."""

    max_iterations: int = DEFAULT_MAX_ITERATIONS  # Clamped to 1..20 by the loader
    kill_switch_enabled: bool = True  # Allow emergency_stop() to cancel every run
    grace_window: float = DEFAULT_GRACE_WINDOW  # Seconds a completed run stays visible


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    file: str | None = None  # Log file path


@dataclass
class ProviderConfig:
    """Configuration for a single tool provider (an MCP server).

    Supports four transport kinds:
        - stdio: Spawns a subprocess (requires command)
        - websocket: Persistent socket (requires a ws:// or wss:// url)
        - streamable-http: Streaming HTTP endpoint (requires url)
        - sse: Server-sent events endpoint (requires url)

    When ``transport`` is None the kind is inferred from command/url.
    Equality is field-wise, which is how a reload recognises an unchanged
    provider.
    """

    name: str  # Unique identifier, also the tool name prefix (e.g. "fs")
    command: list[str] | None = None  # For stdio: ["npx", "-y", "@mcp/server"]
    args: list[str] = field(default_factory=list)  # Additional command args
    env: dict[str, str] = field(default_factory=dict)  # Environment vars (supports ${VAR})
    url: str | None = None  # For websocket/streamable-http/sse
    headers: dict[str, str] = field(default_factory=dict)  # HTTP headers
    transport: str | None = None  # Explicit override of the inferred kind
    timeout: float = DEFAULT_CONNECT_TIMEOUT  # Connect timeout in seconds
    disabled: bool = False  # Never connected while set
    disabled_tools: list[str] = field(default_factory=list)  # Hidden unqualified tool names


@dataclass
class ServerConfig:
    """Remote API server configuration."""

    host: str = "127.0.0.1"
    port: int = 8765


@dataclass
class Config:
    """Root configuration object."""

    agent: AgentConfig = field(default_factory=AgentConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    providers: list[ProviderConfig] = field(default_factory=list)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
