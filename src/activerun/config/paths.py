"""Platform-aware configuration path resolution.

- Windows: %PROGRAMDATA% (system), %APPDATA% (user)
- Unix: /etc/ (system), $XDG_CONFIG_HOME, ~/.config/activerun/ or ~/.activerun/ (user)
- Project: $root/.activerun/
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "activerun"
SHORT_NAME = ".activerun"


def get_system_config_path() -> Path | None:
    if sys.platform == "win32":
        program_data = os.environ.get("PROGRAMDATA")
        if program_data:
            return Path(program_data) / APP_NAME / CONFIG_FILENAME
        return None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_path() -> Path | None:
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        if app_data:
            return Path(app_data) / APP_NAME / CONFIG_FILENAME
        return None

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME / CONFIG_FILENAME

    home = Path.home()
    xdg_default = home / ".config"
    if xdg_default.exists():
        return xdg_default / APP_NAME / CONFIG_FILENAME

    return home / SHORT_NAME / CONFIG_FILENAME


def get_project_config_path(root: str) -> Path:
    """Project-level config path under ``root`` (may not exist)."""
    return Path(root) / SHORT_NAME / CONFIG_FILENAME


def get_config_paths(root: str | None = None) -> list[Path]:
    """Config paths in merge order: system, user, project."""
    paths: list[Path] = []
    for path in (get_system_config_path(), get_user_config_path()):
        if path is not None:
            paths.append(path)
    if root:
        paths.append(get_project_config_path(root))
    return paths
