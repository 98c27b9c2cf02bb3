"""Exception types for activerun.

Only connection and resolution problems are exceptions. Tool invocation
failures, cancellation and the iteration limit travel as data (results and
progress steps) so a running loop never sees them raised.
"""

from __future__ import annotations


class ActiveRunError(Exception):
    """Base class for activerun errors."""


class ProviderConnectionError(ActiveRunError):
    """A tool provider could not be connected.

    Non-fatal to startup: the registry logs it and continues without the
    provider.
    """

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"Provider '{provider}': {message}")


class ConnectionTimeout(ProviderConnectionError):
    """Connecting to a provider took longer than its configured timeout."""

    def __init__(self, provider: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(provider, f"connection timeout after {timeout:g}s")


class ToolResolutionError(ActiveRunError):
    """A tool name could not be resolved to exactly one descriptor."""

    def __init__(self, name: str, message: str, candidates: list[str] | None = None) -> None:
        self.name = name
        self.candidates = candidates or []
        super().__init__(message)


class UnknownToolError(ToolResolutionError):
    """No tool matches the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(name, f"Unknown tool: {name}")


class AmbiguousToolError(ToolResolutionError):
    """Several providers expose a tool with the requested unqualified name."""

    def __init__(self, name: str, candidates: list[str]) -> None:
        super().__init__(
            name,
            f"Ambiguous tool: {name} matches {', '.join(sorted(candidates))}",
            candidates,
        )
