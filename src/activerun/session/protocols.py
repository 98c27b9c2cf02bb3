"""Core types and protocols for the session layer.

These define the contract between:
- The agent loop and the pluggable decision function
- The agent loop and progress consumers (broadcaster, session manager, UI)
- The session manager and a persistence collaborator
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from activerun.mcp.types import ToolCall, ToolResult

if TYPE_CHECKING:
    from activerun.mcp.registry import ToolCatalog

# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------


class StepType(Enum):
    """Kinds of progress steps a run emits."""

    THINKING = "thinking"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    COMPLETION = "completion"
    ERROR = "error"


class StepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(Enum):
    """Outcome of a run as shown in session lists."""

    ACTIVE = "active"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERROR = "error"


class Role(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


def new_step_id() -> str:
    return f"step_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True, slots=True)
class ProgressStep:
    """One labelled step of a run. Replaced, never mutated, when its status changes."""

    type: StepType
    title: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    id: str = field(default_factory=new_step_id)
    timestamp: float = field(default_factory=time.time)
    tool_call: ToolCall | None = None
    tool_result: ToolResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "tool_call": self.tool_call.to_dict() if self.tool_call else None,
            "tool_result": self.tool_result.to_dict() if self.tool_result else None,
        }


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One entry of a run's conversation history.

    A ``tool`` entry records a whole batch of calls with their results.
    """

    role: Role
    content: str
    timestamp: float = field(default_factory=time.time)
    tool_calls: tuple[ToolCall, ...] = ()
    tool_results: tuple[ToolResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.tool_calls:
            data["tool_calls"] = [c.to_dict() for c in self.tool_calls]
        if self.tool_results:
            data["tool_results"] = [r.to_dict() for r in self.tool_results]
        return data


@dataclass(frozen=True, slots=True)
class Decision:
    """What the decision function wants next: tool calls, or a final answer."""

    tool_calls: tuple[ToolCall, ...] = ()
    final_answer: str | None = None

    @classmethod
    def answer(cls, text: str) -> Decision:
        return cls(final_answer=text)

    @classmethod
    def call(cls, *calls: ToolCall) -> Decision:
        return cls(tool_calls=tuple(calls))

    @classmethod
    def coerce(cls, value: Any) -> Decision:
        """Accept a Decision, a final-answer string, or a sequence of ToolCalls.

        Raises:
            TypeError: For anything else.
        """
        if isinstance(value, Decision):
            return value
        if isinstance(value, str):
            return cls(final_answer=value)
        if isinstance(value, ToolCall):
            return cls(tool_calls=(value,))
        if isinstance(value, Sequence) and all(isinstance(v, ToolCall) for v in value):
            return cls(tool_calls=tuple(value))
        raise TypeError(f"Decision function returned {type(value).__name__}")

    @property
    def is_empty(self) -> bool:
        return not self.tool_calls and self.final_answer is None


@runtime_checkable
class Decider(Protocol):
    """The pluggable decision function (e.g. a language-model call).

    Returns a Decision, a final-answer string, or a list of ToolCalls.
    """

    async def __call__(
        self,
        request: str,
        catalog: ToolCatalog,
        history: Sequence[HistoryEntry],
    ) -> Decision | str | Sequence[ToolCall]: ...


@dataclass(slots=True)
class AgentRun:
    """Mutable state of one run. Only its AgentLoop writes to it."""

    id: str
    request: str
    max_iterations: int
    conversation_id: str | None = None
    iteration: int = 0
    steps: list[ProgressStep] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    is_complete: bool = False
    stopped_by_cancellation: bool = False
    iteration_limit_reached: bool = False
    final_content: str | None = None
    is_snoozed: bool = False
    created_at: float = field(default_factory=time.time)
    status: RunStatus = RunStatus.ACTIVE
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    """Immutable view of a run delivered to subscribers."""

    session_id: str
    current_iteration: int
    max_iterations: int
    recent_steps: tuple[ProgressStep, ...]
    step_count: int
    is_complete: bool
    final_content: str | None
    conversation_history: tuple[HistoryEntry, ...]
    is_snoozed: bool
    started_at: float
    conversation_id: str | None = None
    request: str = ""
    status: RunStatus = RunStatus.ACTIVE
    stopped_by_cancellation: bool = False
    iteration_limit_reached: bool = False
    error_message: str | None = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "conversation_id": self.conversation_id,
            "request": self.request,
            "current_iteration": self.current_iteration,
            "max_iterations": self.max_iterations,
            "recent_steps": [s.to_dict() for s in self.recent_steps],
            "step_count": self.step_count,
            "is_complete": self.is_complete,
            "status": self.status.value,
            "stopped_by_cancellation": self.stopped_by_cancellation,
            "iteration_limit_reached": self.iteration_limit_reached,
            "final_content": self.final_content,
            "error_message": self.error_message,
            "conversation_history": [h.to_dict() for h in self.conversation_history],
            "is_snoozed": self.is_snoozed,
            "started_at": self.started_at,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True, slots=True)
class PersistConversationEvent:
    """Handed to persistence callbacks when a run finishes."""

    conversation_id: str
    history: tuple[HistoryEntry, ...]
