"""Lifecycle event channels for generation tasks.

Each task owns one `TaskEvents` with six channels. A shared registry owns an
aggregate `TaskEvents`; `track` wires every channel of a task to the matching
aggregate channel so subscribers of the aggregate see every tracked task's
events. This is an observer relationship only: tracking never transfers
ownership, and `stop_tracking` removes exactly the listeners `track` added.

Listener failures:
    A listener that raises is logged and skipped; the remaining listeners still
    run. A single caller callback cannot break event delivery for others.
"""

import logging
import threading


logger = logging.getLogger(__name__)

CHANNEL_NAMES = ("started", "completed", "succeeded", "failed", "cancelled", "timed_out")


class EventChannel:
    """Ordered listener list invoked with the task that raised the event."""

    def __init__(self, name: str):
        self.name = name
        self._listeners = []
        self._lock = threading.Lock()

    def add_listener(self, listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener) -> None:
        """Remove one registration of `listener`; unknown listeners are ignored."""
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def invoke(self, task) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(task)
            except Exception:
                logger.exception("Listener on '%s' failed for %s", self.name, task)

    __call__ = invoke


class TaskEvents:
    """The six lifecycle channels of one task (or of an aggregate registry)."""

    def __init__(self):
        self.started = EventChannel("started")
        self.completed = EventChannel("completed")
        self.succeeded = EventChannel("succeeded")
        self.failed = EventChannel("failed")
        self.cancelled = EventChannel("cancelled")
        self.timed_out = EventChannel("timed_out")

    def channel(self, name: str) -> EventChannel:
        if name not in CHANNEL_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    def track(self, aggregate: "TaskEvents") -> None:
        """Forward every event raised here to `aggregate` as well."""
        for name in CHANNEL_NAMES:
            self.channel(name).add_listener(aggregate.channel(name).invoke)

    def stop_tracking(self, aggregate: "TaskEvents") -> None:
        for name in CHANNEL_NAMES:
            self.channel(name).remove_listener(aggregate.channel(name).invoke)
