"""Task registry: tracking, cancellation, and lifecycle events for jobs.

Architectural role:
    The single place to enumerate, observe, and cancel in-flight generation
    jobs. A host creates one `TaskRegistry` (inside its owning event loop) and
    passes it to whatever needs it; nothing discovers it implicitly.

Task lifecycle:
    1. `submit(request)` wraps the request in a `JobRequestTask`, tracks it,
       emits `started`, and sends the job on a worker.
    2. `get_images(task)` polls the job to a terminal status on a worker,
       fetches the result assets, and delivers them on the owning thread.
    3. Exactly one outcome event fires (`succeeded`, `failed`, `cancelled`,
       or `timed_out`), followed by exactly one `completed`. Both run on the
       owning thread in a single foreground step that also untracks the task,
       so aggregate subscribers always receive them.

Cancellation:
    `cancel(task)` sets a flag checked before each poll and each asset
    download. An HTTP call already in flight completes first. Nothing is sent
    to the server. A tracked task that no coroutine is currently driving is
    finalized as cancelled right away.

Timeout:
    Each task polls for at most `max_wait` seconds (default 300). Reaching the
    ceiling emits `timed_out` and raises `JobTimeoutError`; it is never
    reported as success.
"""

import logging
import threading
from enum import Enum

from genart.core.errors import (
    GenerationError,
    JobCancelledError,
    JobTimeoutError,
)
from genart.core.job_types import JobRequest, JobResult
from genart.core.task_events import TaskEvents
from genart.image.client import drive_to_completion
from genart.image.provider_config import STATUS_POLL_SECONDS, TRACKED_MAX_WAIT_SECONDS


logger = logging.getLogger(__name__)


class TaskOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class JobRequestTask:
    """Local handle binding one `JobRequest` to its evolving `JobResult`.

    Attributes:
        request: The submitted request.
        result: Server-observed state; `None` until submission succeeds.
        poll_interval: Seconds between status polls.
        on_image: Optional `on_image(index, image)` per decoded asset.
        on_images: Optional `on_images(images)` once all assets are decoded.
        events: This task's `TaskEvents`.
        outcome: Final `TaskOutcome`, `None` while running.
        error: Exception behind a failed or timed-out outcome.
    """

    def __init__(
        self,
        request: JobRequest,
        result: JobResult | None = None,
        poll_interval: float = STATUS_POLL_SECONDS,
        on_image=None,
        on_images=None,
    ):
        self.request = request
        self.result = result
        self.poll_interval = poll_interval
        self.on_image = on_image
        self.on_images = on_images
        self.events = TaskEvents()
        self.outcome = None
        self.error = None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._driving = False
        self._started = False

    @property
    def name(self) -> str:
        return self.request.config.name

    @property
    def description(self) -> str:
        return f"Getting images from {self.name}"

    @property
    def state(self):
        return self.request.state

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def is_done(self) -> bool:
        return self.outcome is not None

    def cancel(self) -> None:
        self._cancelled.set()

    def _claim_outcome(self, outcome: TaskOutcome, error=None) -> bool:
        """Record the outcome once; later claims are rejected."""
        with self._lock:
            if self.outcome is not None:
                return False
            self.outcome = outcome
            self.error = error
            return True

    def __repr__(self):
        job_id = self.result.job_id if self.result else None
        return f"JobRequestTask({self.name!r}, job={job_id}, state={self.state.value})"


class TaskRegistry:
    """Shared tracker for in-flight `JobRequestTask`s.

    Args:
        executor: `DualContextExecutor` bound to the owning loop.
        client: `JobClient` used for submit and polling.
        fetcher: `AssetFetcher` used for result downloads.
        max_wait: Polling ceiling per task, in seconds.
        pause: Optional `pause(seconds)` used between polls (tests).
    """

    def __init__(self, executor, client, fetcher, max_wait: float = TRACKED_MAX_WAIT_SECONDS, pause=None):
        self.executor = executor
        self.client = client
        self.fetcher = fetcher
        self.max_wait = max_wait
        self.pause = pause
        self.events = TaskEvents()
        self._active = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track(self, task: JobRequestTask) -> None:
        """Fan the task's events into `self.events` and list it as active.

        Not idempotent: tracking the same task twice delivers its events twice.
        """
        logger.debug("Tracking: %s", task.name)
        with self._lock:
            task.events.track(self.events)
            self._active.append(task)

    def untrack(self, task: JobRequestTask) -> None:
        with self._lock:
            task.events.stop_tracking(self.events)
            try:
                self._active.remove(task)
            except ValueError:
                pass

    def active_tasks(self) -> list:
        with self._lock:
            return list(self._active)

    def is_tracked(self, task: JobRequestTask) -> bool:
        with self._lock:
            return task in self._active

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, task: JobRequestTask) -> None:
        """Request cooperative cancellation of `task`."""
        task.cancel()
        with task._lock:
            idle = not task._driving and task.outcome is None
        if idle and self.is_tracked(task):
            task.request.lifecycle.cancel()
            self._finish(task, TaskOutcome.CANCELLED)

    def cancel_all(self) -> None:
        for task in self.active_tasks():
            self.cancel(task)

    # ------------------------------------------------------------------
    # Job flow
    # ------------------------------------------------------------------

    async def submit(self, request: JobRequest, poll_interval: float = STATUS_POLL_SECONDS,
                     on_image=None, on_images=None) -> JobRequestTask:
        """Send `request` and return its tracked task.

        On failure the task is finalized as failed (events delivered, task
        untracked) and the error is re-raised.
        """
        task = JobRequestTask(
            request,
            poll_interval=poll_interval,
            on_image=on_image,
            on_images=on_images,
        )
        self.track(task)
        self._emit_started(task)

        with task._lock:
            task._driving = True
        try:
            task.result = await self.executor.background(self.client.send, request)
        except Exception as err:
            self._finish(task, TaskOutcome.FAILED, err)
            raise
        finally:
            with task._lock:
                task._driving = False

        if task.is_cancelled:
            # Cancelled while the submission was in flight.
            task.request.lifecycle.cancel()
            self._finish(task, TaskOutcome.CANCELLED)
        return task

    async def get_images(self, task: JobRequestTask) -> list:
        """Drive `task` to its outcome and return the decoded images.

        Returns:
            Images in server order; `[]` when the task was cancelled.

        Raises:
            JobTimeoutError: Polling ceiling reached.
            GenerationError: Job, transport, protocol, or decode failure.
        """
        if task.result is None:
            raise GenerationError(f"{task.name} has not been submitted.")
        if task.outcome == TaskOutcome.CANCELLED:
            return []
        if task.is_done:
            raise GenerationError(f"{task.name} already finished as {task.outcome.value}.")

        if not self.is_tracked(task):
            self.track(task)
        self._emit_started(task)

        with task._lock:
            task._driving = True
        try:
            outcome, payload = await self.executor.background(self._drive, task)
        finally:
            with task._lock:
                task._driving = False

        if outcome == TaskOutcome.SUCCEEDED:
            return payload
        if outcome == TaskOutcome.CANCELLED:
            return []
        raise payload

    async def generate(self, request: JobRequest, poll_interval: float = STATUS_POLL_SECONDS,
                       on_image=None, on_images=None) -> list:
        """Submit `request` and return its images (`submit` + `get_images`)."""
        task = await self.submit(request, poll_interval, on_image=on_image, on_images=on_images)
        return await self.get_images(task)

    def _drive(self, task: JobRequestTask):
        """Worker-side poll and fetch. Returns `(outcome, images_or_error)`."""
        result = task.result
        try:
            drive_to_completion(
                self.client,
                result,
                max_wait=self.max_wait,
                interval=task.poll_interval,
                cancelled=task._cancelled,
                pause=self.pause,
            )
            if task.is_cancelled:
                raise JobCancelledError(f"{task.name} cancelled after job {result.job_id} finished.")
            images = self.fetcher.fetch_all(
                result.image_urls(),
                on_image=task.on_image,
                on_images=task.on_images,
                cancelled=task._cancelled,
            )
            if task.is_cancelled:
                raise JobCancelledError(f"{task.name} cancelled during asset fetch.")
        except JobCancelledError:
            logger.info("Task %s cancelled", task)
            task.request.lifecycle.cancel()
            self._finish(task, TaskOutcome.CANCELLED, wait=True)
            return TaskOutcome.CANCELLED, None
        except JobTimeoutError as err:
            logger.warning("Task %s timed out after %.0fs", task, err.waited)
            self._finish(task, TaskOutcome.TIMED_OUT, err, wait=True)
            return TaskOutcome.TIMED_OUT, err
        except GenerationError as err:
            logger.error("Task %s failed: %s", task, err)
            task.request.lifecycle.fail()
            self._finish(task, TaskOutcome.FAILED, err, wait=True)
            return TaskOutcome.FAILED, err
        except Exception as err:
            # Caller callbacks (on_image/on_images) may raise anything.
            logger.exception("Task %s failed unexpectedly", task)
            self._finish(task, TaskOutcome.FAILED, err, wait=True)
            return TaskOutcome.FAILED, err

        self._finish(task, TaskOutcome.SUCCEEDED, wait=True)
        return TaskOutcome.SUCCEEDED, images

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _emit_started(self, task: JobRequestTask) -> None:
        with task._lock:
            if task._started:
                return
            task._started = True
        self.executor.foreground(task.events.started.invoke, task)

    def _finish(self, task: JobRequestTask, outcome: TaskOutcome, error=None, wait: bool = False) -> None:
        """Deliver the outcome and `completed`, then untrack, on the owning thread."""
        if not task._claim_outcome(outcome, error):
            return
        future = self.executor.foreground(self._deliver_outcome, task, outcome)
        if wait:
            future.result()

    def _deliver_outcome(self, task: JobRequestTask, outcome: TaskOutcome) -> None:
        try:
            task.events.channel(outcome.value).invoke(task)
            task.events.completed.invoke(task)
        finally:
            self.untrack(task)
