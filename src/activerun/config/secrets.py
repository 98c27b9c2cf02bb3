"""Secret lookup for provider environment and header values.

``${VAR}`` references in a provider's ``env`` or ``headers`` are resolved
here: the process environment first, then a ``.env.secrets`` file in the
working directory (read once with python-dotenv and cached).
"""

from __future__ import annotations

import os
import re
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

SECRETS_FILE = ".env.secrets"

_REFERENCE = re.compile(r"\$\{([^}]+)\}")


@lru_cache(maxsize=4)
def _secrets_file(path: Path | None) -> dict[str, str | None]:
    path = path or Path(SECRETS_FILE)
    return dotenv_values(path) if path.is_file() else {}


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Value of ``key`` from os.environ, else the secrets file, else ``default``.

    ``secrets_path`` replaces ./.env.secrets, mostly for tests.
    """
    if key in os.environ:
        return os.environ[key]
    found = _secrets_file(secrets_path).get(key)
    return default if found is None else found


def expand_references(value: str, secrets_path: Path | None = None) -> str:
    """Replace every ``${VAR}`` in ``value``. Unknown names become empty."""
    return _REFERENCE.sub(lambda m: fetch_secret(m.group(1), "", secrets_path) or "", value)


def clear_secret_cache() -> None:
    _secrets_file.cache_clear()
