"""Process-scoped wiring of the registry, invoker, broadcaster and sessions."""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import TYPE_CHECKING, Any

from activerun.config.loader import clamp_max_iterations, on_config_reload
from activerun.config.schema import Config
from activerun.errors import ActiveRunError
from activerun.logging import get_logger
from activerun.mcp.invoker import ToolInvoker
from activerun.mcp.registry import ToolRegistry
from activerun.session.broadcaster import ProgressBroadcaster
from activerun.session.loop import AgentLoop
from activerun.session.protocols import AgentRun
from activerun.session.session_manager import SessionManager

if TYPE_CHECKING:
    from collections.abc import Callable

    from activerun.mcp.registry import ToolCatalog
    from activerun.session.loop import DecideFn

log = get_logger("engine")

STOP_TIMEOUT = 5.0


def new_session_id() -> str:
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class Engine:
    """Runs agent requests against the configured tool providers.

    Owns one ToolRegistry, ToolInvoker, ProgressBroadcaster and
    SessionManager for the life of the process. Use as an async context
    manager, or call ``start()`` and ``stop()`` explicitly:

        async with Engine(decide, config) as engine:
            session_id = engine.submit("summarise /tmp/notes.txt")
            run = await engine.wait(session_id)
    """

    def __init__(
        self,
        decide: DecideFn,
        config: Config | None = None,
        registry: ToolRegistry | None = None,
        broadcaster: ProgressBroadcaster | None = None,
    ) -> None:
        self.config = config or Config()
        self.decide = decide
        self.registry = registry or ToolRegistry()
        self.invoker = ToolInvoker(self.registry)
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.sessions = SessionManager(
            self.broadcaster, grace_window=self.config.agent.grace_window
        )
        self._loops: dict[str, AgentLoop] = {}
        self._tasks: dict[str, asyncio.Task[AgentRun]] = {}
        self._reconfigure_tasks: set[asyncio.Task[Any]] = set()
        self._unregister_reload: Callable[[], None] | None = None
        self._started = False
        self._stopped = False

    @property
    def is_running(self) -> bool:
        return self._started and not self._stopped

    async def start(self) -> None:
        """Connect the configured providers and start following config reloads."""
        if self._stopped:
            raise ActiveRunError("Engine has been stopped")
        if self._started:
            return
        self._started = True
        await self.registry.start(self.config.providers)
        self._unregister_reload = on_config_reload(self._on_config_reload)
        log.info("Engine started with %d tools", len(self.registry.catalog))

    def _on_config_reload(self, config: Config) -> None:
        task = asyncio.get_running_loop().create_task(self.reconfigure(config))
        self._reconfigure_tasks.add(task)
        task.add_done_callback(self._reconfigure_tasks.discard)

    async def reconfigure(self, config: Config) -> ToolCatalog:
        """Apply a new config. Runs already in flight keep their catalog."""
        self.config = config
        self.sessions.grace_window = config.agent.grace_window
        return await self.registry.reconfigure(config.providers)

    # -------------------------------------------------------------------------
    # Runs
    # -------------------------------------------------------------------------

    def submit(
        self,
        request: str,
        conversation_id: str | None = None,
        snoozed: bool = False,
        max_iterations: int | None = None,
    ) -> str:
        """Start a run in the background.

        Args:
            request: The user request.
            conversation_id: Id handed to persistence when the run finishes.
            snoozed: Start without taking focus.
            max_iterations: Override the configured bound (clamped to 1..20).

        Returns:
            The new run's session id.
        """
        if self._stopped:
            raise ActiveRunError("Engine has been stopped")

        limit = (
            clamp_max_iterations(max_iterations)
            if max_iterations is not None
            else self.config.agent.max_iterations
        )
        run = AgentRun(
            id=new_session_id(),
            request=request,
            max_iterations=limit,
            conversation_id=conversation_id,
            is_snoozed=snoozed,
        )
        loop = AgentLoop(run, self.decide, self.invoker, self.registry.catalog, self.broadcaster)
        self.sessions.register(loop)
        self._loops[run.id] = loop

        task = asyncio.get_running_loop().create_task(loop.execute(), name=f"run:{run.id}")
        self._tasks[run.id] = task
        task.add_done_callback(lambda t, sid=run.id: self._run_done(sid, t))
        return run.id

    def _run_done(self, session_id: str, task: asyncio.Task[AgentRun]) -> None:
        self._tasks.pop(session_id, None)
        self._loops.pop(session_id, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error("Run %s crashed: %s", session_id, error)

    async def wait(self, session_id: str) -> AgentRun | None:
        """Wait for a run to finish. None if it is not running."""
        task = self._tasks.get(session_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def run(self, request: str, **kwargs: Any) -> AgentRun:
        """Submit a request and wait for its run to finish."""
        session_id = self.submit(request, **kwargs)
        run = await self.wait(session_id)
        assert run is not None
        return run

    def cancel(self, session_id: str) -> bool:
        loop = self._loops.get(session_id)
        if loop is None:
            return self.sessions.cancel(session_id)
        loop.cancel()
        return True

    def emergency_stop(self) -> int:
        """Cancel every unfinished run, if the kill switch is enabled.

        Returns:
            The number of runs signalled.
        """
        if not self.config.agent.kill_switch_enabled:
            log.warning("Emergency stop requested but the kill switch is disabled")
            return 0

        count = 0
        for loop in list(self._loops.values()):
            if not loop.run.is_complete:
                loop.cancel()
                count += 1
        log.warning("Emergency stop: cancelled %d run(s)", count)
        return count

    def running(self) -> list[str]:
        return sorted(self._tasks)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def tools(self) -> list[dict[str, Any]]:
        return self.registry.catalog.to_list()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.is_running,
            "active_runs": len(self._tasks),
            "sessions": len(self.sessions.active_sessions()),
            "tools": len(self.registry.catalog),
            "providers": len(self.registry.provider_status()),
            "max_iterations": self.config.agent.max_iterations,
            "kill_switch_enabled": self.config.agent.kill_switch_enabled,
        }

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Cancel runs and cleanup timers, then close every provider connection."""
        if self._stopped:
            return
        self._stopped = True

        if self._unregister_reload is not None:
            self._unregister_reload()
            self._unregister_reload = None
        for task in list(self._reconfigure_tasks):
            task.cancel()

        for loop in list(self._loops.values()):
            loop.cancel()
        tasks = list(self._tasks.values())
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        self.sessions.close()
        self.broadcaster.close()
        await self.registry.close()
        log.info("Engine stopped")

    async def __aenter__(self) -> Engine:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()
