"""RunPod serverless image-generation runner.

Processing flow:
    1. Read the RunPod endpoint configuration.
    2. Submit the caller-built job payload to `{endpoint}/run`.
    3. Poll `{endpoint}/status/{id}` (no-cache headers) until completion/fault,
       waiting the server-suggested `delayTime` between polls.
    4. Decode the base64 image in `output.message` and return it with the id.

Payload scope:
    The payload is sent as given (wrapped in `{"input": ...}` when it has no
    `input` key). Building payloads from templates is the caller's concern.

Base64:
    The completed output is decoded in memory; no temporary files are written.

Error handling strategy:
    - Missing endpoint URL/token -> `PreconditionError`.
    - HTTP-layer failures -> `TransportError`; malformed bodies -> `ProtocolError`.
    - `FAILED` status -> `JobError`; server-side cancel -> `JobCancelledError`.
    - Poll budget exhausted -> `JobTimeoutError`.
    - `cancel(job_id)` is best-effort: logged, never raised.

Threading:
    `run` blocks and belongs on a worker; `run_async` wraps it with
    `DualContextExecutor.background` so the image resumes on the owning loop.
"""

import logging
import threading
import time
from dataclasses import dataclass, field

import requests

from genart.core.errors import (
    JobCancelledError,
    JobError,
    JobTimeoutError,
    PreconditionError,
    ProtocolError,
    TransportError,
)
from genart.image.fetcher import decode_base64_image
from genart.image.provider_config import (
    HTTP_TIMEOUT_SECONDS,
    RUNPOD_ENDPOINT_URL,
    RUNPOD_KEY_FILE,
    STATUS_POLL_SECONDS,
    TRACKED_MAX_WAIT_SECONDS,
    load_key,
)


logger = logging.getLogger(__name__)

MIN_POLL_SECONDS = 1.0

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
}


@dataclass(frozen=True)
class RunpodConfig:
    """RunPod endpoint; `endpoint_url` excludes `/run` and `/status`."""

    endpoint_url: str
    token: str = field(default="", repr=False)
    name: str = "RunPod"

    def validate(self) -> None:
        if not self.endpoint_url:
            raise PreconditionError("RunPod endpoint URL is not configured.")
        if not self.token:
            raise PreconditionError("RunPod API token is not configured.")

    def url(self, *parts: str) -> str:
        return "/".join([self.endpoint_url.rstrip("/"), *parts])


def load_runpod_config() -> RunpodConfig:
    """Build a `RunpodConfig` from `RUNPOD_ENDPOINT_URL` and the runpod key."""
    return RunpodConfig(
        endpoint_url=RUNPOD_ENDPOINT_URL,
        token=load_key(RUNPOD_KEY_FILE) or "",
    )


class RunpodRunner:
    """Submit/poll/decode runner for one RunPod endpoint."""

    def __init__(
        self,
        config: RunpodConfig,
        session=None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        max_wait: float = TRACKED_MAX_WAIT_SECONDS,
        pause=None,
    ):
        self.config = config
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_wait = max_wait
        self.pause = pause

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.token}"}

    def _call(self, method: str, url: str, **kwargs):
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as err:
            raise TransportError(f"RunPod request {url} failed: {err}", url=url) from err
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"RunPod request {url} failed with status code {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        try:
            body = response.json()
        except ValueError as err:
            raise ProtocolError(f"RunPod response from {url} is not valid JSON") from err
        if not isinstance(body, dict):
            raise ProtocolError(f"RunPod response from {url} must be a JSON object")
        return body

    def start(self, payload: dict) -> str:
        """Submit `payload` to `/run` and return the job id."""
        self.config.validate()
        if "input" not in payload:
            payload = {"input": payload}

        body = self._call("POST", self.config.url("run"), json=payload, headers=self._headers())
        logger.debug("RunPod run response: %s", body)

        job_id = body.get("id")
        if not job_id:
            raise ProtocolError("RunPod did not return a job id.")
        logger.info("Submitted RunPod job %s", job_id)
        return str(job_id)

    def status(self, job_id: str) -> dict:
        if not job_id:
            raise PreconditionError("Cannot update status without an id.")
        headers = {**self._headers(), **NO_CACHE_HEADERS}
        return self._call("GET", self.config.url("status", job_id), headers=headers)

    def wait_for_image(self, job_id: str, cancelled: threading.Event | None = None):
        """Poll `job_id` until it completes and return the decoded image."""
        waited = 0.0
        while True:
            if cancelled is not None and cancelled.is_set():
                raise JobCancelledError(f"RunPod job {job_id} polling cancelled.")

            body = self.status(job_id)
            status = str(body.get("status", "")).upper()
            logger.debug("RunPod job %s status %s", job_id, status)

            if status == "COMPLETED":
                output = body.get("output")
                message = output.get("message") if isinstance(output, dict) else None
                if not message:
                    raise ProtocolError(f"RunPod job {job_id} completed without an image.")
                return decode_base64_image(message, name=job_id)

            if status == "FAILED":
                raise JobError(body.get("error") or f"RunPod job {job_id} failed.", job_id=job_id)

            if status == "CANCELLED":
                raise JobCancelledError(f"RunPod job {job_id} was cancelled on the server.")

            delay = _poll_delay(body.get("delayTime"))
            if waited + delay > self.max_wait:
                raise JobTimeoutError(
                    f"RunPod job {job_id} not finished after {waited:.0f}s",
                    job_id=job_id,
                    waited=waited,
                )
            if self.pause is not None:
                self.pause(delay)
            elif cancelled is not None:
                cancelled.wait(delay)
            else:
                time.sleep(delay)
            waited += delay

    def run(self, payload: dict, cancelled: threading.Event | None = None):
        """Submit and wait. Returns `(image, job_id)`."""
        job_id = self.start(payload)
        return self.wait_for_image(job_id, cancelled), job_id

    async def run_async(self, executor, payload: dict, cancelled: threading.Event | None = None):
        return await executor.background(self.run, payload, cancelled)

    def cancel(self, job_id: str) -> bool:
        """Best-effort `POST {endpoint}/cancel/{job_id}`."""
        if not job_id:
            return False
        url = self.config.url("cancel", job_id)
        try:
            response = self.session.request("POST", url, headers=self._headers(), timeout=self.timeout)
        except requests.exceptions.RequestException:
            logger.exception("RunPod cancel for job %s failed", job_id)
            return False
        logger.info("RunPod cancel response for job %s: %s", job_id, response.text)
        return 200 <= response.status_code < 300


def _poll_delay(delay_ms) -> float:
    """Server `delayTime` (ms) clamped to [MIN_POLL_SECONDS, STATUS_POLL_SECONDS]."""
    try:
        seconds = float(delay_ms) / 1000.0
    except (TypeError, ValueError):
        return STATUS_POLL_SECONDS
    return min(max(seconds, MIN_POLL_SECONDS), STATUS_POLL_SECONDS)
