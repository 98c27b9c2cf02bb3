"""Agent runs: the loop controller, progress fan-out and session tracking."""

from activerun.session.broadcaster import ProgressBroadcaster, Subscription
from activerun.session.loop import AgentLoop, LoopState
from activerun.session.protocols import (
    AgentRun,
    Decider,
    Decision,
    HistoryEntry,
    PersistConversationEvent,
    ProgressSnapshot,
    ProgressStep,
    Role,
    RunStatus,
    StepStatus,
    StepType,
)
from activerun.session.session_manager import DEFAULT_CONSUMER, SessionManager

__all__ = [
    "DEFAULT_CONSUMER",
    "AgentLoop",
    "AgentRun",
    "Decider",
    "Decision",
    "HistoryEntry",
    "LoopState",
    "PersistConversationEvent",
    "ProgressBroadcaster",
    "ProgressSnapshot",
    "ProgressStep",
    "Role",
    "RunStatus",
    "SessionManager",
    "StepStatus",
    "StepType",
    "Subscription",
]
