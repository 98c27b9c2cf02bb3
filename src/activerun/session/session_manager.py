"""Tracks active runs, focus per consumer and post-completion cleanup.

The SessionManager listens to the progress broadcaster and keeps the
latest snapshot of every run a UI might still show. Focus rules:

- A new, non-snoozed, incomplete run is focused in every consumer that has
  nothing focused. It never preempts an existing focus.
- A completed run that is not snoozed is removed after the grace window.
  Focus on it is cleared, not reassigned.
- Snoozing a focused run clears that focus.
- Dismissing a run removes it at once and moves focus to the most recently
  started remaining non-snoozed run.
- ``focus()`` is a forced override used for deep links.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING

from activerun.config.schema import DEFAULT_GRACE_WINDOW
from activerun.logging import get_logger
from activerun.session.protocols import PersistConversationEvent, ProgressSnapshot

if TYPE_CHECKING:
    from activerun.session.broadcaster import ProgressBroadcaster
    from activerun.session.loop import AgentLoop

log = get_logger("session")

DEFAULT_CONSUMER = "default"
MAX_RECENT_SESSIONS = 20
# Ids of finished or removed runs kept to ignore their late updates
MAX_REMEMBERED_IDS = 500

PersistCallback = Callable[[PersistConversationEvent], None]


class SessionManager:
    """Registry of live runs with focus, snooze and cleanup handling."""

    def __init__(
        self,
        broadcaster: ProgressBroadcaster,
        grace_window: float = DEFAULT_GRACE_WINDOW,
    ) -> None:
        self.grace_window = grace_window
        self._broadcaster = broadcaster
        self._snapshots: dict[str, ProgressSnapshot] = {}
        self._loops: dict[str, AgentLoop] = {}
        self._focus: dict[str, str | None] = {DEFAULT_CONSUMER: None}
        self._cleanup: dict[str, asyncio.Task[None]] = {}
        self._recent: deque[ProgressSnapshot] = deque(maxlen=MAX_RECENT_SESSIONS)
        self._finished: dict[str, None] = {}
        self._removed: dict[str, None] = {}
        self._persist_callbacks: list[PersistCallback] = []
        self._unlisten = broadcaster.add_listener(self.handle_update)

    # -------------------------------------------------------------------------
    # Updates from the broadcaster
    # -------------------------------------------------------------------------

    def register(self, loop: AgentLoop) -> None:
        """Make a loop reachable for cancel and snooze by its session id."""
        self._loops[loop.session_id] = loop

    def handle_update(self, snapshot: ProgressSnapshot) -> None:
        sid = snapshot.session_id
        if sid in self._removed:
            # Dismissed while still running: only record the outcome
            if snapshot.is_complete:
                self._record_finished(snapshot)
                self._broadcaster.forget(sid)
            return

        is_new = sid not in self._snapshots
        self._snapshots[sid] = snapshot

        if is_new and not snapshot.is_snoozed and not snapshot.is_complete:
            for consumer, current in self._focus.items():
                if current is None:
                    self._focus[consumer] = sid
                    log.debug("Auto-focused run %s for %s", sid, consumer)

        if snapshot.is_snoozed:
            self._cancel_cleanup(sid)
        if snapshot.is_complete:
            self._record_finished(snapshot)
            if not snapshot.is_snoozed and sid not in self._cleanup:
                self._schedule_cleanup(sid)

    def _record_finished(self, snapshot: ProgressSnapshot) -> None:
        sid = snapshot.session_id
        if sid in self._finished:
            return
        _remember(self._finished, sid)
        self._recent.appendleft(snapshot)

        if snapshot.conversation_history:
            event = PersistConversationEvent(
                conversation_id=snapshot.conversation_id or sid,
                history=snapshot.conversation_history,
            )
            for callback in list(self._persist_callbacks):
                try:
                    callback(event)
                except Exception as e:
                    log.error("Persist callback failed for run %s: %s", sid, e)

    # -------------------------------------------------------------------------
    # Cleanup timers
    # -------------------------------------------------------------------------

    def _schedule_cleanup(self, session_id: str) -> None:
        self._cancel_cleanup(session_id)
        self._cleanup[session_id] = asyncio.create_task(
            self._expire(session_id), name=f"cleanup:{session_id}"
        )
        log.debug("Run %s will be removed in %.1fs", session_id, self.grace_window)

    def _cancel_cleanup(self, session_id: str) -> None:
        task = self._cleanup.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()
            log.debug("Cancelled pending removal of run %s", session_id)

    async def _expire(self, session_id: str) -> None:
        await asyncio.sleep(self.grace_window)
        self._cleanup.pop(session_id, None)
        self._remove(session_id)
        log.debug("Removed completed run %s", session_id)

    def _remove(self, session_id: str) -> list[str]:
        """Drop a run and clear focus on it.

        Returns:
            The consumers that had it focused.
        """
        self._snapshots.pop(session_id, None)
        self._loops.pop(session_id, None)
        _remember(self._removed, session_id)
        self._broadcaster.forget(session_id)

        lost = [c for c, focused in self._focus.items() if focused == session_id]
        for consumer in lost:
            self._focus[consumer] = None
        return lost

    # -------------------------------------------------------------------------
    # Focus
    # -------------------------------------------------------------------------

    def register_consumer(self, consumer: str) -> None:
        self._focus.setdefault(consumer, None)

    def consumers(self) -> list[str]:
        return list(self._focus)

    def focused(self, consumer: str = DEFAULT_CONSUMER) -> str | None:
        return self._focus.get(consumer)

    def focus(self, session_id: str | None, consumer: str = DEFAULT_CONSUMER) -> bool:
        """Force focus onto ``session_id`` (None clears it).

        Returns:
            False if the run is not known.
        """
        if session_id is not None and session_id not in self._snapshots:
            return False
        self._focus[consumer] = session_id
        log.debug("Focus for %s set to %s", consumer, session_id)
        return True

    def _next_focus(self) -> str | None:
        candidates = [s for s in self._snapshots.values() if not s.is_snoozed]
        if not candidates:
            return None
        return min(candidates, key=lambda s: (-s.started_at, s.session_id)).session_id

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def snooze(self, session_id: str) -> bool:
        return self._set_snoozed(session_id, True)

    def unsnooze(self, session_id: str) -> bool:
        return self._set_snoozed(session_id, False)

    def _set_snoozed(self, session_id: str, snoozed: bool) -> bool:
        current = self._snapshots.get(session_id)
        if current is None:
            return False

        loop = self._loops.get(session_id)
        if loop is not None:
            loop.set_snoozed(snoozed)
            snapshot = self._broadcaster.snapshot(loop.run)
        else:
            snapshot = dataclasses.replace(current, is_snoozed=snoozed)

        if snoozed:
            for consumer, focused in self._focus.items():
                if focused == session_id:
                    self._focus[consumer] = None

        log.info("Run %s %s", session_id, "snoozed" if snoozed else "unsnoozed")
        # Snooze is not part of change detection, so force delivery
        self._broadcaster.publish_snapshot(snapshot, force=True)
        return True

    def dismiss(self, session_id: str) -> bool:
        """Remove a run now and hand its focus to the next candidate.

        The run's loop keeps going if it has not finished; use ``cancel``
        to stop it.
        """
        if session_id not in self._snapshots:
            return False
        self._cancel_cleanup(session_id)
        lost = self._remove(session_id)
        if lost:
            successor = self._next_focus()
            for consumer in lost:
                self._focus[consumer] = successor
        log.info("Dismissed run %s", session_id)
        return True

    def cancel(self, session_id: str) -> bool:
        """Forward a cancellation request to the run's loop."""
        loop = self._loops.get(session_id)
        if loop is None:
            return False
        loop.cancel()
        return True

    def cancel_all(self) -> int:
        """Cancel every unfinished run. Returns how many were signalled."""
        count = 0
        for loop in list(self._loops.values()):
            if not loop.run.is_complete:
                loop.cancel()
                count += 1
        return count

    def clear_inactive(self) -> int:
        """Remove every completed run and reassign any focus they held."""
        finished = [sid for sid, s in self._snapshots.items() if s.is_complete]
        lost: set[str] = set()
        for sid in finished:
            self._cancel_cleanup(sid)
            lost.update(self._remove(sid))
        if lost:
            successor = self._next_focus()
            for consumer in lost:
                self._focus[consumer] = successor
        return len(finished)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, session_id: str) -> ProgressSnapshot | None:
        return self._snapshots.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._snapshots

    def active_sessions(self) -> list[ProgressSnapshot]:
        """Every tracked run, most recently started first."""
        return sorted(self._snapshots.values(), key=lambda s: (-s.started_at, s.session_id))

    def recent_sessions(self, limit: int | None = None) -> list[ProgressSnapshot]:
        """Finished runs, newest first."""
        recent = list(self._recent)
        return recent if limit is None else recent[:limit]

    def find_by_conversation(self, conversation_id: str) -> ProgressSnapshot | None:
        for snapshot in self.active_sessions():
            if snapshot.conversation_id == conversation_id:
                return snapshot
        for snapshot in self._recent:
            if snapshot.conversation_id == conversation_id:
                return snapshot
        return None

    def pending_cleanups(self) -> list[str]:
        return sorted(self._cleanup)

    def on_persist(self, callback: PersistCallback) -> Callable[[], None]:
        """Register a callback for finished conversations.

        Returns:
            A function that unregisters the callback.
        """
        self._persist_callbacks.append(callback)

        def remove() -> None:
            if callback in self._persist_callbacks:
                self._persist_callbacks.remove(callback)

        return remove

    def close(self) -> None:
        """Cancel pending cleanups and stop listening."""
        for task in self._cleanup.values():
            if not task.done():
                task.cancel()
        self._cleanup.clear()
        self._unlisten()


def _remember(ids: dict[str, None], session_id: str) -> None:
    ids[session_id] = None
    while len(ids) > MAX_REMEMBERED_IDS:
        del ids[next(iter(ids))]
