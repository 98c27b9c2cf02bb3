"""Configuration management for activerun.

Hierarchical YAML configuration:
- System-level config (/etc/activerun/ or %PROGRAMDATA%)
- User-level config (~/.config/activerun/, ~/.activerun/ or %APPDATA%)
- Project-level config ($root/.activerun/)
- Environment variable overrides (highest priority)

Example usage:
    from activerun.config import load_config

    config = load_config(root="/path/to/project")
    print(config.agent.max_iterations)
    for provider in config.providers:
        print(provider.name)
"""

from activerun.config.loader import (
    get_config,
    load_config,
    on_config_reload,
    reload_config,
    reset_config,
)
from activerun.config.paths import get_config_paths
from activerun.config.schema import (
    AgentConfig,
    Config,
    LoggingConfig,
    ProviderConfig,
    ServerConfig,
)
from activerun.config.watcher import ConfigWatcher

__all__ = [
    "Config",
    "load_config",
    "get_config",
    "reload_config",
    "reset_config",
    "on_config_reload",
    "AgentConfig",
    "LoggingConfig",
    "ProviderConfig",
    "ServerConfig",
    "get_config_paths",
    "ConfigWatcher",
]
