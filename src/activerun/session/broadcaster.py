"""Snapshot fan-out from running loops to listeners and subscribers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING

from activerun.logging import TRACE, get_logger
from activerun.session.protocols import ProgressSnapshot

if TYPE_CHECKING:
    from activerun.session.protocols import AgentRun

log = get_logger("session.broadcaster")

DEFAULT_RECENT_STEPS = 3
DEFAULT_QUEUE_SIZE = 100

SnapshotListener = Callable[[ProgressSnapshot], None]


class Subscription:
    """Async iterator over snapshots for one run, or all runs.

    Backed by a bounded queue. When the consumer falls behind, the oldest
    queued snapshot is dropped to make room for the newest.
    """

    def __init__(
        self,
        broadcaster: ProgressBroadcaster,
        session_id: str | None,
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.session_id = session_id
        self._broadcaster = broadcaster
        self._queue: asyncio.Queue[ProgressSnapshot | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def wants(self, snapshot: ProgressSnapshot) -> bool:
        return self.session_id is None or snapshot.session_id == self.session_id

    def put(self, snapshot: ProgressSnapshot | None) -> None:
        if self._closed and snapshot is not None:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(snapshot)

    async def get(self) -> ProgressSnapshot | None:
        """Next snapshot, or None once the subscription is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """Stop the subscription. A pending ``get`` returns None."""
        if self._closed:
            return
        self._broadcaster.unsubscribe(self)
        self.put(None)
        self._closed = True

    def __aiter__(self) -> AsyncIterator[ProgressSnapshot]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressSnapshot]:
        while True:
            snapshot = await self.get()
            if snapshot is None:
                return
            yield snapshot

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class ProgressBroadcaster:
    """Builds snapshots of runs and delivers the changed ones.

    Listeners are plain callbacks invoked synchronously in publish order
    (the session manager is one). Subscriptions are queue-backed streams
    for UI consumers. Delivery is at-most-once with no replay: a
    subscriber only sees snapshots published after it subscribed.
    """

    def __init__(
        self,
        recent_step_limit: int = DEFAULT_RECENT_STEPS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.recent_step_limit = recent_step_limit
        self.queue_size = queue_size
        self._listeners: list[SnapshotListener] = []
        self._subscriptions: list[Subscription] = []
        self._last: dict[str, ProgressSnapshot] = {}

    def add_listener(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a callback for every delivered snapshot.

        Returns:
            A function that unregisters the callback.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def subscribe(self, session_id: str | None = None) -> Subscription:
        """Open a stream of snapshots for one run, or every run if None."""
        subscription = Subscription(self, session_id, self.queue_size)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def snapshot(self, run: AgentRun) -> ProgressSnapshot:
        return ProgressSnapshot(
            session_id=run.id,
            conversation_id=run.conversation_id,
            request=run.request,
            current_iteration=run.iteration,
            max_iterations=run.max_iterations,
            recent_steps=tuple(run.steps[-self.recent_step_limit:]),
            step_count=len(run.steps),
            is_complete=run.is_complete,
            status=run.status,
            stopped_by_cancellation=run.stopped_by_cancellation,
            iteration_limit_reached=run.iteration_limit_reached,
            final_content=run.final_content,
            error_message=run.error_message,
            conversation_history=tuple(run.history),
            is_snoozed=run.is_snoozed,
            started_at=run.created_at,
        )

    def has_changed(self, snapshot: ProgressSnapshot) -> bool:
        """Whether ``snapshot`` differs from the last one delivered for its run."""
        last = self._last.get(snapshot.session_id)
        if last is None:
            return True
        return (
            last.is_complete != snapshot.is_complete
            or last.current_iteration != snapshot.current_iteration
            or last.step_count != snapshot.step_count
            or last.recent_steps != snapshot.recent_steps
            or last.final_content != snapshot.final_content
        )

    def publish(self, run: AgentRun) -> bool:
        """Snapshot ``run`` and deliver it if anything changed.

        Returns:
            True if the snapshot was delivered.
        """
        return self.publish_snapshot(self.snapshot(run))

    def publish_snapshot(self, snapshot: ProgressSnapshot, force: bool = False) -> bool:
        if not force and not self.has_changed(snapshot):
            log.log(TRACE, "Dropped unchanged snapshot for run %s", snapshot.session_id)
            return False

        self._last[snapshot.session_id] = snapshot

        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                log.error("Progress listener failed for run %s: %s", snapshot.session_id, e)

        for subscription in list(self._subscriptions):
            if subscription.wants(snapshot):
                subscription.put(snapshot)
        return True

    def last(self, session_id: str) -> ProgressSnapshot | None:
        return self._last.get(session_id)

    def forget(self, session_id: str) -> None:
        """Drop change-detection state for a run that is gone."""
        self._last.pop(session_id, None)

    def close(self) -> None:
        """End every subscription."""
        for subscription in list(self._subscriptions):
            subscription.close()
        self._subscriptions.clear()
        self._listeners.clear()
        self._last.clear()
