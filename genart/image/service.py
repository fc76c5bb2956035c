"""Single-component image generation for hosts that do not need a registry.

Role in pipeline:
    `GenerativeImage` is the simple caller of the job client: it owns one
    endpoint config plus generation defaults, turns a prompt into a request,
    drives it with the short (60 s) polling ceiling, and hands results to its
    callbacks on the owning thread.

Parameter handling:
    `parameters()` derives `width = base_resolution * aspect_ratio`,
    `height = base_resolution`, and adds `seed` only when one is set.

Callbacks (all run on the owning thread via `executor.foreground`):
    - `on_started()` when a prompt/retry begins.
    - `on_image(index, image)` per decoded asset, `on_images(images)` once.
    - `on_failed(message)` for failures and timeouts (never for cancellation).
    - `on_complete()` once per prompt/retry, whatever the outcome.

Timeouts:
    A job still queued/processing at the ceiling reports
    `on_failed("Image not ready yet.")` and raises `JobTimeoutError`; `retry()`
    can pick it up later from the stored job id.
"""

import logging
import random
import threading

from genart.core.errors import (
    GenerationError,
    JobCancelledError,
    JobTimeoutError,
    PreconditionError,
)
from genart.core.job_types import JobRequest, JobResult
from genart.image.client import JobClient, drive_to_completion
from genart.image.fetcher import AssetFetcher
from genart.image.provider_config import (
    BASE_RESOLUTION,
    MAX_WAIT_SECONDS,
    STATUS_POLL_SECONDS,
)


logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = "Image not ready yet."


class GenerativeImage:
    """Prompt-driven image generation bound to one endpoint."""

    def __init__(
        self,
        config,
        executor,
        client=None,
        fetcher=None,
        max_wait: float = MAX_WAIT_SECONDS,
        poll_interval: float = STATUS_POLL_SECONDS,
        base_resolution: int = BASE_RESOLUTION,
        aspect_ratio: float = 1.0,
        seed: int | None = None,
        pause=None,
    ):
        if config is None:
            raise PreconditionError("GenerativeImage requires an endpoint config.")
        self.config = config
        self.executor = executor
        self.client = client or JobClient()
        self.fetcher = fetcher or AssetFetcher(executor)
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.base_resolution = base_resolution
        self.aspect_ratio = aspect_ratio
        self.seed = seed
        self.pause = pause

        self.on_started = None
        self.on_complete = None
        self.on_failed = None
        self.on_image = None
        self.on_images = None

        self.last_prompt = None
        self.last_job_id = None
        self._cancelled = threading.Event()

    def parameters(self) -> dict:
        parameters = {
            "width": int(round(self.base_resolution * self.aspect_ratio)),
            "height": self.base_resolution,
        }
        if self.seed is not None:
            parameters["seed"] = self.seed
        return parameters

    def randomize_seed(self) -> int:
        self.seed = random.randrange(0, 2**31 - 1)
        return self.seed

    def cancel(self) -> None:
        """Stop the running prompt before its next poll or download."""
        self._cancelled.set()

    async def prompt(self, text: str) -> list:
        """Generate images for `text`.

        Returns:
            Decoded images, or `[]` if cancelled.

        Raises:
            JobTimeoutError: Ceiling reached (also reported via `on_failed`).
            GenerationError: Any other failure (also reported via `on_failed`).
        """
        self.last_prompt = text
        cancelled = self._cancelled = threading.Event()
        self._notify(self.on_started)
        try:
            request = JobRequest(config=self.config, prompt=text, parameters=self.parameters())
            result = await self.executor.background(self.client.send, request)
            self.last_job_id = result.job_id
            return await self.executor.background(self._run, result, cancelled)
        except JobCancelledError:
            logger.info("Prompt cancelled: %r", text)
            return []
        except JobTimeoutError:
            self._notify(self.on_failed, NOT_READY_MESSAGE)
            raise
        except GenerationError as err:
            self._notify(self.on_failed, str(err))
            raise
        finally:
            self._notify(self.on_complete)

    async def reroll(self) -> list:
        """Run the last prompt again (a new job, new seed if randomized)."""
        if not self.last_prompt:
            raise PreconditionError("Nothing to reroll; no prompt has been sent.")
        return await self.prompt(self.last_prompt)

    async def retry(self) -> list:
        """Check the last job once more and fetch its images if it finished.

        Returns:
            Decoded images, or `[]` if no job was submitted yet.
        """
        if not self.last_job_id:
            return []
        self._notify(self.on_started)
        try:
            result = JobResult(job_id=self.last_job_id)
            await self.executor.background(
                self.client.poll_status, self.config, self.last_job_id, result
            )
            if not result.is_finished:
                raise JobTimeoutError(NOT_READY_MESSAGE, job_id=self.last_job_id)
            return await self.executor.background(
                self.fetcher.fetch_all,
                result.image_urls(),
                self.on_image,
                self.on_images,
            )
        except JobTimeoutError:
            self._notify(self.on_failed, NOT_READY_MESSAGE)
            raise
        except GenerationError as err:
            self._notify(self.on_failed, str(err))
            raise
        finally:
            self._notify(self.on_complete)

    def _run(self, result: JobResult, cancelled: threading.Event) -> list:
        drive_to_completion(
            self.client,
            result,
            max_wait=self.max_wait,
            interval=self.poll_interval,
            cancelled=cancelled,
            pause=self.pause,
        )
        return self.fetcher.fetch_all(
            result.image_urls(),
            on_image=self.on_image,
            on_images=self.on_images,
            cancelled=cancelled,
        )

    def _notify(self, callback, *args) -> None:
        if callback is not None:
            self.executor.foreground(callback, *args)
