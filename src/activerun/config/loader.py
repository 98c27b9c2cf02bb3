"""Load the layered YAML config into typed dataclasses.

Layers are read in ``get_config_paths`` order, deep-merged, then topped
with environment overrides. The result for the global (root-less) lookup
is cached until ``reload_config`` or ``reset_config``.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml

from activerun.config.merge import merge_configs
from activerun.config.paths import get_config_paths
from activerun.config.schema import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_GRACE_WINDOW,
    DEFAULT_MAX_ITERATIONS,
    MAX_MAX_ITERATIONS,
    MIN_MAX_ITERATIONS,
    AgentConfig,
    Config,
    LoggingConfig,
    ProviderConfig,
    ServerConfig,
)

_log = logging.getLogger("activerun.config")

_cached_config: Config | None = None

_reload_callbacks: list[Callable[[Config], None]] = []

_KNOWN_KEYS = {"agent", "logging", "providers", "server"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Parse one config file. Missing, unreadable or non-mapping files give {}."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as e:
        _log.warning("Cannot read config %s: %s", path, e)
        return {}

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s, ignoring it: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("ACTIVERUN_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    max_iterations = os.environ.get("ACTIVERUN_MAX_ITERATIONS")
    if max_iterations:
        try:
            overrides.setdefault("agent", {})["max_iterations"] = int(max_iterations)
        except ValueError:
            _log.warning("Ignoring non-integer ACTIVERUN_MAX_ITERATIONS=%r", max_iterations)

    return overrides


def clamp_max_iterations(value: Any) -> int:
    """Coerce a configured iteration bound into the supported 1..20 range."""
    try:
        number = int(value)
    except (TypeError, ValueError):
        _log.warning("Invalid max_iterations %r, using %d", value, DEFAULT_MAX_ITERATIONS)
        return DEFAULT_MAX_ITERATIONS

    clamped = max(MIN_MAX_ITERATIONS, min(MAX_MAX_ITERATIONS, number))
    if clamped != number:
        _log.warning("max_iterations %d out of range, clamped to %d", number, clamped)
    return clamped


def _get(data: dict[str, Any], key: str, default: Any) -> Any:
    """``data[key]``, with an explicit YAML null treated as unset."""
    value = data.get(key)
    return default if value is None else value


def _provider_from_dict(data: dict[str, Any]) -> ProviderConfig:
    command = data.get("command")
    if isinstance(command, str):
        command = [command]

    return ProviderConfig(
        name=data["name"],
        command=list(command) if command else None,
        args=[str(a) for a in data.get("args") or []],
        env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        url=data.get("url"),
        headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
        transport=data.get("transport"),
        timeout=float(_get(data, "timeout", DEFAULT_CONNECT_TIMEOUT)),
        disabled=bool(data.get("disabled", False)),
        disabled_tools=[str(t) for t in data.get("disabled_tools") or []],
    )


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    agent_data = data.get("agent") or {}
    agent = AgentConfig(
        max_iterations=clamp_max_iterations(
            _get(agent_data, "max_iterations", DEFAULT_MAX_ITERATIONS)
        ),
        kill_switch_enabled=bool(_get(agent_data, "kill_switch_enabled", True)),
        grace_window=float(_get(agent_data, "grace_window", DEFAULT_GRACE_WINDOW)),
    )

    log_data = data.get("logging") or {}
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        file=log_data.get("file"),
    )

    providers: list[ProviderConfig] = []
    seen: set[str] = set()
    for p in data.get("providers") or []:
        if not isinstance(p, dict) or not p.get("name"):
            continue
        if p["name"] in seen:
            _log.warning("Duplicate provider '%s' ignored", p["name"])
            continue
        seen.add(p["name"])
        providers.append(_provider_from_dict(p))

    server_data = data.get("server") or {}
    server = ServerConfig(
        host=_get(server_data, "host", "127.0.0.1"),
        port=int(_get(server_data, "port", 8765)),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        agent=agent,
        logging=logging_config,
        providers=providers,
        server=server,
        extra=extra,
    )


def load_config(root: str | None = None, reload: bool = False) -> Config:
    """Merge every config layer into a Config.

    Later layers win: system, user, project ($root/.activerun/config.yaml),
    then environment variables. Only the root-less result is cached.

    Args:
        root: Project directory for the project layer.
        reload: Ignore the cache.
    """
    global _cached_config

    if root is None and _cached_config is not None and not reload:
        return _cached_config

    layers = [data for data in map(load_yaml_file, get_config_paths(root)) if data]
    _log.debug("Merging %d config file(s)", len(layers))
    config = dict_to_config(merge_configs(*layers, env_overrides()))

    if root is None:
        _cached_config = config
    return config


def get_config() -> Config:
    """The cached global config, loaded on first use."""
    return _cached_config if _cached_config is not None else load_config()


def reset_config() -> None:
    global _cached_config
    _cached_config = None


def reload_config(root: str | None = None) -> Config:
    """Re-read every layer and hand the result to each reload callback.

    A failing callback is logged and does not stop the others.
    """
    config = load_config(root=root, reload=True)
    for callback in list(_reload_callbacks):
        try:
            callback(config)
        except Exception as e:
            _log.warning("Reload callback %r failed: %s", callback, e)
    return config


def on_config_reload(callback: Callable[[Config], None]) -> Callable[[], None]:
    """Call ``callback`` with the new Config after every reload.

    Returns:
        A function that unregisters the callback.
    """
    _reload_callbacks.append(callback)

    def unregister() -> None:
        with contextlib.suppress(ValueError):
            _reload_callbacks.remove(callback)

    return unregister
