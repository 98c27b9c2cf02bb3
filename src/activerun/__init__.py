"""activerun: concurrent tool-using agent runs over MCP tool providers."""

__version__ = "0.1.0"

# Public API
from activerun.config import Config, get_config, load_config
from activerun.engine import Engine
from activerun.mcp import (
    ToolCall,
    ToolCatalog,
    ToolDescriptor,
    ToolInvoker,
    ToolRegistry,
    ToolResult,
)
from activerun.session import (
    AgentLoop,
    AgentRun,
    Decision,
    HistoryEntry,
    PersistConversationEvent,
    ProgressBroadcaster,
    ProgressSnapshot,
    ProgressStep,
    SessionManager,
)

__all__ = [
    # Main entry point
    "Engine",
    # Config
    "Config",
    "load_config",
    "get_config",
    # Tools
    "ToolCall",
    "ToolCatalog",
    "ToolDescriptor",
    "ToolInvoker",
    "ToolRegistry",
    "ToolResult",
    # Runs
    "AgentLoop",
    "AgentRun",
    "Decision",
    "HistoryEntry",
    "PersistConversationEvent",
    "ProgressBroadcaster",
    "ProgressSnapshot",
    "ProgressStep",
    "SessionManager",
]
