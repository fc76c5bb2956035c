"""Per-job lifecycle state machine.

States:
    Idle -> Queued -> Processing -> {Complete | Failed}
    Queued | Processing -> Cancelled

    `Idle` is entry-only: a job is Idle from construction until its first
    submission attempt. Complete, Failed, and Cancelled are terminal; no
    transition leaves them.

Server-observed statuses:
    `observe(status)` maps a polled `JobStatus` onto the machine. Repeating the
    current status is a no-op, and a regression reported by the server
    (Processing -> Queued) is ignored and logged rather than applied.

Thread safety:
    Transitions are guarded by a lock; a job's state may be read from the owning
    thread while a worker advances it.
"""

import logging
import threading
from enum import Enum

from genart.core.errors import InvalidTransitionError


logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    IDLE = "idle"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    LifecycleState.COMPLETE,
    LifecycleState.FAILED,
    LifecycleState.CANCELLED,
})

_TRANSITIONS = {
    # A submission may come back already processing, complete, or failed.
    LifecycleState.IDLE: {
        LifecycleState.QUEUED,
        LifecycleState.PROCESSING,
        LifecycleState.COMPLETE,
        LifecycleState.FAILED,
    },
    LifecycleState.QUEUED: {
        LifecycleState.PROCESSING,
        LifecycleState.COMPLETE,
        LifecycleState.FAILED,
        LifecycleState.CANCELLED,
    },
    LifecycleState.PROCESSING: {
        LifecycleState.COMPLETE,
        LifecycleState.FAILED,
        LifecycleState.CANCELLED,
    },
    LifecycleState.COMPLETE: set(),
    LifecycleState.FAILED: set(),
    LifecycleState.CANCELLED: set(),
}


class JobLifecycle:
    """State holder for one job instance."""

    def __init__(self):
        self._state = LifecycleState.IDLE
        self._lock = threading.Lock()

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state.is_terminal()

    def advance(self, target: LifecycleState) -> LifecycleState:
        """Move to `target`.

        Raises:
            InvalidTransitionError: If the move is not in the transition table.
        """
        with self._lock:
            if target not in _TRANSITIONS[self._state]:
                raise InvalidTransitionError(
                    f"Cannot move job from {self._state.value} to {target.value}"
                )
            self._state = target
            return self._state

    def observe(self, status) -> LifecycleState:
        """Apply a server-reported `JobStatus`; see module docstring for the rules."""
        # JobStatus values share their names with the matching states.
        target = LifecycleState(status.value)
        with self._lock:
            current = self._state
            if target == current:
                return current
            if current == LifecycleState.PROCESSING and target == LifecycleState.QUEUED:
                logger.warning("Ignoring status regression from processing to queued")
                return current
            if target not in _TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Cannot move job from {current.value} to {target.value}"
                )
            self._state = target
            return target

    def fail(self) -> bool:
        """Enter Failed unless already terminal. Returns whether the state changed."""
        with self._lock:
            if self._state.is_terminal():
                return False
            self._state = LifecycleState.FAILED
            return True

    def cancel(self) -> bool:
        """Enter Cancelled from Queued or Processing. Returns whether it did."""
        with self._lock:
            if LifecycleState.CANCELLED not in _TRANSITIONS[self._state]:
                return False
            self._state = LifecycleState.CANCELLED
            return True

    def __repr__(self):
        return f"JobLifecycle({self._state.value})"
