"""HTTP job client: submit a generation job and poll it to a terminal status.

Processing flow:
    1. Validate the endpoint config and request (no network on failure).
    2. Wait for the endpoint's rate-limit slot.
    3. POST the JSON payload with bearer auth.
    4. Merge the JSON response into the job's `JobResult` in place.
    5. Advance the request lifecycle from the reported status.

Wire format:
    Submit: `POST {host}{job_path}` with body `{prompt, image?, **parameters}`.
    Parameters always travel in the JSON body, never in the query string.
    Poll: `POST {host}{status_path}` with body `{id}`.

Error handling strategy:
    - Missing config fields or job id -> `PreconditionError`, zero HTTP calls.
    - Connectivity failures and non-2xx statuses -> `TransportError`.
    - Bodies that are not JSON objects of the expected shape -> `ProtocolError`.
    - A non-empty `error` in a 2xx body -> `JobError` (after the result has
      been updated, so holders still see the reported state).

Threading:
    All methods block. Callers run them through
    `DualContextExecutor.background`.
"""

import logging
import threading
import time

import requests

from genart.core.errors import (
    GenerationError,
    JobCancelledError,
    JobError,
    JobTimeoutError,
    PreconditionError,
    ProtocolError,
    TransportError,
)
from genart.core.job_types import JobRequest, JobResult
from genart.core.lifecycle import LifecycleState
from genart.image.provider_config import (
    HTTP_TIMEOUT_SECONDS,
    MAX_WAIT_SECONDS,
    STATUS_POLL_SECONDS,
)
from genart.image.rate_limiter import DEFAULT_RATE_LIMITER


logger = logging.getLogger(__name__)


def _auth_headers(api_key: str) -> dict:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


class JobClient:
    """Blocking submit/poll transport for one or more endpoints.

    Args:
        session: `requests.Session` (or compatible) used for every call.
        rate_limiter: Throttle for every POST. Defaults to the process-wide
            `DEFAULT_RATE_LIMITER`, so independently built clients still
            space requests to the same endpoint.
        timeout: Per-request timeout in seconds.
    """

    def __init__(self, session=None, rate_limiter=None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter or DEFAULT_RATE_LIMITER
        self.timeout = timeout

    def submit(self, config, prompt: str, parameters=None, image=None) -> JobResult:
        """Create a `JobRequest` for `prompt` and send it.

        Returns:
            The populated `JobResult`; `result.request.job_id` is set.
        """
        if config is None:
            raise PreconditionError("Request must have an endpoint config.")
        request = JobRequest(
            config=config,
            prompt=prompt,
            parameters=dict(parameters or {}),
            image=image,
        )
        return self.send(request)

    def send(self, request: JobRequest) -> JobResult:
        """Submit an existing request. See module docstring for failures."""
        config = request.config
        if config is None:
            raise PreconditionError("Request must have an endpoint config.")
        config.validate()
        payload = request.to_payload()

        if request.state == LifecycleState.IDLE:
            request.lifecycle.advance(LifecycleState.QUEUED)

        result = JobResult(request=request)
        try:
            body = self._post(config, config.job_url, payload)
            self._apply(request, result, body)
            if not result.job_id:
                raise ProtocolError(f"{config.name} did not return a job id.")
        except GenerationError:
            request.lifecycle.fail()
            raise

        logger.info("Submitted job %s to %s (%s)", result.job_id, config.name, result.status.value)
        return result

    def poll_status(self, config, job_id: str, result: JobResult) -> JobResult:
        """Fetch the current status of `job_id` and merge it into `result`."""
        if not job_id:
            raise PreconditionError("Cannot update status without an id.")
        if config is None:
            raise PreconditionError("Request must have an endpoint config.")
        config.validate()

        request = result.request
        if request is None:
            request = JobRequest(config=config, job_id=job_id)
            result.request = request
        if result.job_id is None:
            result.job_id = job_id

        try:
            body = self._post(config, config.status_url, {"id": job_id})
            self._apply(request, result, body)
        except GenerationError:
            request.lifecycle.fail()
            raise

        logger.debug("Job %s is %s", job_id, result.status.value)
        return result

    def refresh(self, result: JobResult) -> JobResult:
        """Poll using the config and id already stored on `result`."""
        if result.request is None:
            raise PreconditionError("Result is not attached to a request.")
        return self.poll_status(result.request.config, result.job_id, result)

    def cancel_remote(self, config, job_id: str) -> bool:
        """Best-effort `POST {host}/cancel/{job_id}`.

        Failures are logged and swallowed; the return value only says whether
        the server answered with a 2xx status.
        """
        if not job_id:
            return False
        url = f"{config.host.rstrip('/')}/cancel/{job_id}"
        try:
            response = self.session.post(url, headers=_auth_headers(config.api_key), timeout=self.timeout)
        except requests.exceptions.RequestException:
            logger.exception("Cancel request for job %s failed", job_id)
            return False
        logger.info("Cancel response for job %s: %s", job_id, response.text)
        return 200 <= response.status_code < 300

    def _post(self, config, url: str, payload: dict):
        self.rate_limiter.acquire(config)
        # Payload values may hold base64 images; log the keys only.
        logger.debug("POST %s fields=%s", url, sorted(payload))

        try:
            response = self.session.post(
                url,
                json=payload,
                headers=_auth_headers(config.api_key),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as err:
            raise TransportError(f"Request {url} failed: {err}", url=url) from err

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Request {url} failed with status code {response.status_code}",
                status_code=response.status_code,
                url=url,
            )

        try:
            body = response.json()
        except ValueError as err:
            raise ProtocolError(f"Response from {url} is not valid JSON") from err

        logger.debug("Response from %s: %s", url, body)
        return body

    @staticmethod
    def _apply(request: JobRequest, result: JobResult, body) -> None:
        result.merge(body)
        if result.job_id:
            request.job_id = result.job_id
        if result.error:
            raise JobError(result.error, job_id=result.job_id)
        result.check_invariants()
        if not request.lifecycle.is_terminal:
            request.lifecycle.observe(result.status)


def drive_to_completion(
    client: JobClient,
    result: JobResult,
    *,
    max_wait: float = MAX_WAIT_SECONDS,
    interval: float = STATUS_POLL_SECONDS,
    cancelled: threading.Event | None = None,
    pause=None,
) -> JobResult:
    """Poll `result` until it is finished.

    Wait time is accumulated per poll interval (HTTP time is not counted).

    Args:
        client: Client used for each poll.
        result: Submitted job result; mutated in place.
        max_wait: Ceiling on accumulated wait, in seconds.
        interval: Pause before each poll, in seconds.
        cancelled: Cooperative cancellation flag, checked before every poll.
            The pause wakes early when it is set.
        pause: Optional `pause(seconds)` override (tests).

    Returns:
        `result`, finished with status Complete.

    Raises:
        JobTimeoutError: Ceiling reached while still Queued/Processing.
        JobCancelledError: `cancelled` was set.
        JobError / TransportError / ProtocolError: From the poll itself.
    """
    waited = 0.0
    while not result.is_finished and waited < max_wait:
        if cancelled is not None and cancelled.is_set():
            raise JobCancelledError(f"Job {result.job_id} was cancelled.")

        if pause is not None:
            pause(interval)
        elif cancelled is not None:
            cancelled.wait(interval)
        else:
            time.sleep(interval)
        waited += interval

        if cancelled is not None and cancelled.is_set():
            raise JobCancelledError(f"Job {result.job_id} was cancelled.")
        client.refresh(result)

    if not result.is_finished:
        raise JobTimeoutError(
            f"Job {result.job_id} not finished after {waited:.0f}s",
            job_id=result.job_id,
            waited=waited,
        )
    return result
