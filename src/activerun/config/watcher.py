"""Reload configuration when one of its files changes on disk.

Polls modification times of every config layer. A detected change calls
``reload_config``, which notifies the callbacks registered with
``on_config_reload``; the engine registers one that swaps in a new tool
catalog.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

from activerun.config.loader import reload_config
from activerun.config.paths import get_config_paths

_log = logging.getLogger("activerun.config.watcher")

DEFAULT_POLL_INTERVAL = 2.0


def _stat_all(paths: list[Path]) -> dict[Path, float]:
    found: dict[Path, float] = {}
    for path in paths:
        with contextlib.suppress(OSError):
            found[path] = path.stat().st_mtime
    return found


class ConfigWatcher:
    """Polls the config layers for ``root`` and reloads on change.

    Use as an async context manager around the engine's lifetime, or call
    ``start()`` / ``stop()`` from inside a running event loop.
    """

    def __init__(
        self,
        root: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._root = root
        self._poll_interval = poll_interval
        self._task: asyncio.Task[None] | None = None
        self._seen: dict[Path, float] = {}

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def check(self) -> list[Path]:
        """Compare against the previous poll.

        Returns:
            Config files created, modified or deleted since then.
        """
        current = _stat_all(get_config_paths(self._root))
        previous, self._seen = self._seen, current
        return sorted(
            path
            for path in previous.keys() | current.keys()
            if previous.get(path) != current.get(path)
        )

    async def _run(self) -> None:
        self.check()
        while True:
            await asyncio.sleep(self._poll_interval)
            changed = self.check()
            if not changed:
                continue
            _log.info("Config changed: %s", ", ".join(str(p) for p in changed))
            try:
                reload_config(root=self._root)
            except Exception as e:
                _log.error("Config reload failed, keeping the previous config: %s", e)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="config-watcher")
        _log.debug("Watching config every %.1fs", self._poll_interval)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            _log.debug("Stopped watching config")

    async def __aenter__(self) -> ConfigWatcher:
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.stop()
