"""Combine config layers, later layers taking precedence."""

from __future__ import annotations

from functools import reduce
from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated by ``override`` without mutating either.

    Mappings merge key by key. Lists and scalars replace the base value, so
    a project's ``providers`` list is not appended to the user's. A ``None``
    in ``override`` means "not set here".
    """
    merged = dict(base)
    for key, value in override.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = deep_merge(current, value)
        merged[key] = value
    return merged


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    return reduce(deep_merge, (c for c in configs if c), {})
