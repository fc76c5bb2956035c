"""Unit tests for the per-job lifecycle state machine."""

import pytest

from genart.core.errors import InvalidTransitionError
from genart.core.job_types import JobStatus
from genart.core.lifecycle import JobLifecycle, LifecycleState


class TestJobLifecycle:
    def test_happy_path(self):
        lifecycle = JobLifecycle()
        lifecycle.advance(LifecycleState.QUEUED)
        lifecycle.advance(LifecycleState.PROCESSING)
        lifecycle.advance(LifecycleState.COMPLETE)

        assert lifecycle.state == LifecycleState.COMPLETE
        assert lifecycle.is_terminal

    def test_idle_cannot_be_cancelled(self):
        lifecycle = JobLifecycle()
        with pytest.raises(InvalidTransitionError):
            lifecycle.advance(LifecycleState.CANCELLED)
        assert lifecycle.cancel() is False
        assert lifecycle.state == LifecycleState.IDLE

    @pytest.mark.parametrize("terminal", [
        LifecycleState.COMPLETE,
        LifecycleState.FAILED,
        LifecycleState.CANCELLED,
    ])
    def test_terminal_states_have_no_exit(self, terminal):
        lifecycle = JobLifecycle()
        lifecycle.advance(LifecycleState.QUEUED)
        lifecycle.advance(terminal)

        with pytest.raises(InvalidTransitionError):
            lifecycle.advance(LifecycleState.PROCESSING)
        assert lifecycle.fail() is False
        assert lifecycle.cancel() is False
        assert lifecycle.state == terminal

    def test_observe_repeated_status_is_noop(self):
        lifecycle = JobLifecycle()
        lifecycle.advance(LifecycleState.QUEUED)
        assert lifecycle.observe(JobStatus.QUEUED) == LifecycleState.QUEUED

    def test_observe_ignores_regression(self, caplog):
        lifecycle = JobLifecycle()
        lifecycle.advance(LifecycleState.QUEUED)
        lifecycle.observe(JobStatus.PROCESSING)

        assert lifecycle.observe(JobStatus.QUEUED) == LifecycleState.PROCESSING
        assert "regression" in caplog.text

    def test_observe_finished_status(self):
        lifecycle = JobLifecycle()
        lifecycle.advance(LifecycleState.QUEUED)
        lifecycle.observe(JobStatus.FAILED)
        assert lifecycle.state == LifecycleState.FAILED

    def test_cancel_from_processing(self):
        lifecycle = JobLifecycle()
        lifecycle.advance(LifecycleState.QUEUED)
        lifecycle.advance(LifecycleState.PROCESSING)

        assert lifecycle.cancel() is True
        assert lifecycle.state == LifecycleState.CANCELLED
