"""The per-run think / call tools / observe state machine."""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from activerun.logging import get_logger
from activerun.session.protocols import (
    AgentRun,
    Decision,
    HistoryEntry,
    ProgressStep,
    Role,
    RunStatus,
    StepStatus,
    StepType,
)

if TYPE_CHECKING:
    from activerun.mcp.invoker import ToolInvoker
    from activerun.mcp.registry import ToolCatalog
    from activerun.mcp.types import ToolCall, ToolResult
    from activerun.session.broadcaster import ProgressBroadcaster

log = get_logger("session.loop")

T = TypeVar("T")

DecideFn = Callable[
    [str, "ToolCatalog", Sequence[HistoryEntry]],
    Awaitable["Decision | str | Sequence[ToolCall]"],
]

_PREVIEW_CHARS = 200


class LoopState(Enum):
    INIT = "init"
    THINKING = "thinking"
    TOOL_CALLING = "tool_calling"
    COMPLETE = "complete"
    ERROR = "error"


class _StopRequested(Exception):
    """Raised inside the loop once cancel() has been observed."""


def _preview(text: str) -> str:
    if len(text) <= _PREVIEW_CHARS:
        return text
    return text[:_PREVIEW_CHARS] + "..."


def _history_text(calls: Sequence[ToolCall], results: Sequence[ToolResult]) -> str:
    parts = []
    for call, result in zip(calls, results):
        if result.success:
            parts.append(f"[{call.name}] {result.text()}")
        else:
            parts.append(f"[{call.name}] Error: {result.error}")
    return "\n\n".join(parts)


class AgentLoop:
    """Drives one AgentRun to completion.

    The loop asks ``decide`` what to do, runs any requested tool calls
    through the invoker, records the results and repeats until the decision
    function gives a final answer, the iteration limit is hit, or the run is
    cancelled. It works against the catalog snapshot it was created with,
    so a registry reconfiguration mid-run does not change its view.

    Each step change is published through the broadcaster.
    """

    def __init__(
        self,
        run: AgentRun,
        decide: DecideFn,
        invoker: ToolInvoker,
        catalog: ToolCatalog,
        broadcaster: ProgressBroadcaster,
    ) -> None:
        self.run = run
        self.catalog = catalog
        self.state = LoopState.INIT
        self._decide = decide
        self._invoker = invoker
        self._broadcaster = broadcaster
        self._cancel = asyncio.Event()

    @property
    def session_id(self) -> str:
        return self.run.id

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Ask the loop to stop at the next opportunity."""
        if self.run.is_complete:
            return
        if not self._cancel.is_set():
            log.info("Cancellation requested for run %s", self.run.id)
        self._cancel.set()

    def set_snoozed(self, snoozed: bool) -> None:
        self.run.is_snoozed = snoozed

    async def execute(self) -> AgentRun:
        """Run the state machine until a terminal state and return the run."""
        run = self.run
        run.history.append(HistoryEntry(role=Role.USER, content=run.request))
        run.iteration = 0
        self._publish()
        log.info("Run %s started (max %d iterations)", run.id, run.max_iterations)

        try:
            while True:
                self._check_cancelled()
                if run.iteration >= run.max_iterations:
                    self._finish_limit()
                    break

                run.iteration += 1
                decision = await self._think()
                if decision is None:
                    break
                if not decision.tool_calls:
                    self._finish_answer(decision.final_answer or "")
                    break
                await self._call_tools(decision.tool_calls)
        except _StopRequested:
            self._finish_stopped()
        except asyncio.CancelledError:
            self._finish_stopped()
            raise
        except Exception as e:
            log.exception("Run %s crashed", run.id)
            if not run.is_complete:
                self._fail(f"Internal error: {str(e) or type(e).__name__}")

        return run

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    async def _think(self) -> Decision | None:
        self.state = LoopState.THINKING
        index = self._add_step(ProgressStep(
            type=StepType.THINKING,
            title=f"Processing request (iteration {self.run.iteration})",
            description="Analyzing request and planning next actions",
            status=StepStatus.IN_PROGRESS,
        ))

        try:
            raw = await self._until_cancelled(
                self._decide(self.run.request, self.catalog, tuple(self.run.history))
            )
        except _StopRequested:
            self._update_step(index, status=StepStatus.ERROR, description="Cancelled")
            raise
        except Exception as e:
            self._update_step(index, status=StepStatus.ERROR)
            self._fail(f"Decision function failed: {str(e) or type(e).__name__}")
            return None

        try:
            decision = Decision.coerce(raw)
        except TypeError as e:
            self._update_step(index, status=StepStatus.ERROR)
            self._fail(str(e))
            return None

        if decision.is_empty:
            self._update_step(index, status=StepStatus.ERROR)
            self._fail("Decision function returned neither tool calls nor a final answer")
            return None

        self._update_step(index, status=StepStatus.COMPLETED)
        return decision

    async def _call_tools(self, calls: Sequence[ToolCall]) -> None:
        self.state = LoopState.TOOL_CALLING
        done_calls: list[ToolCall] = []
        results: list[ToolResult] = []

        try:
            for call in calls:
                self._check_cancelled()
                index = self._add_step(ProgressStep(
                    type=StepType.TOOL_CALL,
                    title=f"Calling {call.name}",
                    description=f"Executing tool with {len(call.arguments)} argument(s)",
                    status=StepStatus.IN_PROGRESS,
                    tool_call=call,
                ))

                try:
                    result = await self._until_cancelled(self._invoker.invoke(call, self.catalog))
                except _StopRequested:
                    self._update_step(index, status=StepStatus.ERROR, description="Cancelled")
                    raise

                status = StepStatus.COMPLETED if result.success else StepStatus.ERROR
                self._update_step(index, status=status, tool_result=result)
                self._add_step(ProgressStep(
                    type=StepType.TOOL_RESULT,
                    title=f"Result from {call.name}",
                    description=_preview(result.text() if result.success else result.error or ""),
                    status=status,
                    tool_call=call,
                    tool_result=result,
                ))
                done_calls.append(call)
                results.append(result)
        finally:
            if done_calls:
                self.run.history.append(HistoryEntry(
                    role=Role.TOOL,
                    content=_history_text(done_calls, results),
                    tool_calls=tuple(done_calls),
                    tool_results=tuple(results),
                ))

    # -------------------------------------------------------------------------
    # Terminal states
    # -------------------------------------------------------------------------

    def _finish_answer(self, answer: str) -> None:
        run = self.run
        run.history.append(HistoryEntry(role=Role.ASSISTANT, content=answer))
        run.final_content = answer
        run.status = RunStatus.COMPLETED
        self._complete(ProgressStep(
            type=StepType.COMPLETION,
            title="Task completed",
            description=_preview(answer) or "Successfully completed the requested task",
            status=StepStatus.COMPLETED,
        ))
        log.info("Run %s completed after %d iteration(s)", run.id, run.iteration)

    def _finish_limit(self) -> None:
        run = self.run
        run.iteration_limit_reached = True
        run.status = RunStatus.STOPPED
        run.final_content = None
        self._complete(ProgressStep(
            type=StepType.COMPLETION,
            title="Maximum iterations reached",
            description="Task stopped due to iteration limit",
            status=StepStatus.ERROR,
        ))
        log.warning("Run %s hit the iteration limit (%d)", run.id, run.max_iterations)

    def _finish_stopped(self) -> None:
        run = self.run
        if run.is_complete:
            return
        run.stopped_by_cancellation = True
        run.status = RunStatus.STOPPED
        self._complete(ProgressStep(
            type=StepType.COMPLETION,
            title="Agent stopped",
            description="The run was cancelled before it finished",
            status=StepStatus.ERROR,
        ))
        log.info("Run %s stopped at iteration %d", run.id, run.iteration)

    def _fail(self, message: str) -> None:
        run = self.run
        run.status = RunStatus.ERROR
        run.error_message = message
        run.final_content = message
        self.state = LoopState.ERROR
        run.steps.append(ProgressStep(
            type=StepType.ERROR,
            title="Run failed",
            description=message,
            status=StepStatus.ERROR,
        ))
        run.is_complete = True
        self._publish()
        log.error("Run %s failed: %s", run.id, message)

    def _complete(self, step: ProgressStep) -> None:
        self.state = LoopState.COMPLETE
        self.run.steps.append(step)
        self.run.is_complete = True
        self._publish()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise _StopRequested

    async def _until_cancelled(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancel() fires first.

        Raises:
            _StopRequested: cancel() was called before or while waiting.
        """
        self._check_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        finally:
            waiter.cancel()

        if self._cancel.is_set():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await task
            raise _StopRequested
        return task.result()

    def _add_step(self, step: ProgressStep) -> int:
        self.run.steps.append(step)
        self._publish()
        return len(self.run.steps) - 1

    def _update_step(self, index: int, **changes: Any) -> None:
        self.run.steps[index] = dataclasses.replace(self.run.steps[index], **changes)
        self._publish()

    def _publish(self) -> None:
        self._broadcaster.publish(self.run)
