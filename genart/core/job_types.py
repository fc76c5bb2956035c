"""Job data contracts shared by the client, registry, and fetcher.

Architectural role:
    Defines the wire-facing shapes of one generation job: where it is sent
    (`EndpointConfig`), what is sent (`JobRequest`), and what the server reports
    back (`JobResult`, `JobStatus`, result assets).

Result variants:
    A finished job carries either a single result URL or an ordered list of
    asset descriptors. `JobResult.output` models this as a tagged union
    (`SingleImage` / `ImageSet`, discriminated by `kind`) instead of two
    nullable fields; `JobResult.image_urls()` dispatches on the tag.

Mutation model:
    `JobResult.merge` applies a status response in place. Keys missing from the
    response keep their previous values, so every holder of the object sees
    the latest server state without the object being replaced.
"""

import base64
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from genart.core.errors import PreconditionError, ProtocolError
from genart.core.lifecycle import JobLifecycle, LifecycleState


logger = logging.getLogger(__name__)

RESERVED_PAYLOAD_KEYS = ("prompt", "image", "id")


class JobStatus(str, Enum):
    """Server-reported job status; Failed and Complete are terminal."""

    QUEUED = "queued"
    PROCESSING = "processing"
    FAILED = "failed"
    COMPLETE = "complete"

    @classmethod
    def parse(cls, value) -> "JobStatus":
        """Parse a status string case-insensitively.

        Raises:
            ProtocolError: For non-string or unknown values.
        """
        if not isinstance(value, str):
            raise ProtocolError(f"Job status must be a string, got {type(value).__name__}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ProtocolError(f"Unknown job status: {value!r}") from None

    def is_finished(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)


@dataclass(frozen=True)
class EndpointConfig:
    """One remote generation backend.

    Immutable and shared read-only by every job sent to it. The rate limiter
    keys on `key` (host, job path, credential) rather than object identity, so
    two equal configs built independently share one throttle.

    Attributes:
        name: Human-readable label used in task names and logs.
        host: Base URL, for example `https://api.example.com`.
        job_path: Submission path appended to `host`.
        status_path: Status-polling path appended to `host`.
        api_key: Bearer credential. Excluded from `repr`.
    """

    name: str
    host: str
    job_path: str
    status_path: str
    api_key: str = field(default="", repr=False)

    @property
    def key(self) -> tuple:
        return (self.host, self.job_path, self.api_key)

    @property
    def job_url(self) -> str:
        return self.host.rstrip("/") + self.job_path

    @property
    def status_url(self) -> str:
        return self.host.rstrip("/") + self.status_path

    def validate(self) -> None:
        """Raise `PreconditionError` naming every empty required field."""
        missing = [
            label
            for label, value in (
                ("host", self.host),
                ("job_path", self.job_path),
                ("status_path", self.status_path),
                ("api_key", self.api_key),
            )
            if not value
        ]
        if missing:
            raise PreconditionError(
                f"Endpoint '{self.name}' is missing: {', '.join(missing)}"
            )


@dataclass(frozen=True)
class GeneratedAsset:
    """One entry of the `images` list in a job response."""

    url: str
    filename: str | None = None
    type: str | None = None
    subfolder: str | None = None

    @classmethod
    def from_dict(cls, data) -> "GeneratedAsset":
        if not isinstance(data, dict):
            raise ProtocolError("Image entries must be JSON objects")
        url = data.get("url")
        if not url or not isinstance(url, str):
            raise ProtocolError("Image entry is missing its url")
        return cls(
            url=url,
            filename=data.get("filename"),
            type=data.get("type"),
            subfolder=data.get("subfolder"),
        )


class OutputKind(str, Enum):
    SINGLE_URL = "single_url"
    ASSET_LIST = "asset_list"


@dataclass(frozen=True)
class SingleImage:
    url: str
    kind = OutputKind.SINGLE_URL


@dataclass(frozen=True)
class ImageSet:
    assets: tuple
    kind = OutputKind.ASSET_LIST


@dataclass
class JobResult:
    """Server-observed state of one job.

    Attributes:
        job_id: Server-assigned identifier.
        status: Current `JobStatus`; starts Queued.
        error: Application-level error reported by the server.
        processor: Optional backend label reported by the server.
        output: `SingleImage`, `ImageSet`, or `None` until the job completes.
        request: The `JobRequest` this result belongs to.
    """

    job_id: str | None = None
    status: JobStatus = JobStatus.QUEUED
    error: str | None = None
    processor: str | None = None
    output: SingleImage | ImageSet | None = None
    request: Any = field(default=None, repr=False, compare=False)

    @property
    def is_finished(self) -> bool:
        return self.status.is_finished()

    def merge(self, body) -> "JobResult":
        """Apply one response body in place and return `self`.

        A non-empty `error` moves the status to Failed, so a Complete result
        always carries an image reference.

        Raises:
            ProtocolError: If the body is not an object or a field has the
                wrong shape. The result is left untouched in that case.
        """
        if not isinstance(body, dict):
            raise ProtocolError("Job response must be a JSON object")

        job_id = self.job_id
        if body.get("id") is not None:
            if not isinstance(body["id"], (str, int)):
                raise ProtocolError("Job id must be a string")
            job_id = str(body["id"])

        status = self.status
        if body.get("status") is not None:
            status = JobStatus.parse(body["status"])

        assets = None
        if body.get("images") is not None:
            if not isinstance(body["images"], list):
                raise ProtocolError("Job images must be a list")
            assets = tuple(GeneratedAsset.from_dict(item) for item in body["images"])

        url = body.get("url") if "url" in body else None
        if url is not None and not isinstance(url, str):
            raise ProtocolError("Job url must be a string")

        error = self.error
        if "error" in body:
            error = str(body["error"]) if body["error"] else None
            if error:
                # A reported error fails the job whatever status came with it.
                status = JobStatus.FAILED

        # Everything validated; apply.
        self.job_id = job_id
        if self.is_finished and status != self.status:
            logger.warning(
                "Job %s already %s; ignoring reported status %s",
                self.job_id, self.status.value, status.value,
            )
        else:
            self.status = status
        self.error = error
        if body.get("processor") is not None:
            self.processor = str(body["processor"])
        if assets:
            self.output = ImageSet(assets=assets)
        elif url and not isinstance(self.output, ImageSet):
            self.output = SingleImage(url=url)

        if self.status == JobStatus.FAILED and not self.error:
            self.error = "Job reported failed status without an error message"
        return self

    def check_invariants(self) -> None:
        """Raise `ProtocolError` when a Complete job carries no image reference."""
        if self.status == JobStatus.COMPLETE and not self.error and not self.image_urls():
            raise ProtocolError(f"Job {self.job_id} is complete but returned no image url")

    def image_urls(self) -> list[str]:
        """Return result URLs in server order."""
        if self.output is None:
            return []
        if self.output.kind == OutputKind.ASSET_LIST:
            return [asset.url for asset in self.output.assets]
        return [self.output.url]


@dataclass
class JobRequest:
    """One submission to an endpoint.

    `job_id` stays `None` until the server accepts the submission. The
    lifecycle starts Idle and is advanced by the client and registry.
    """

    config: EndpointConfig
    prompt: str = ""
    parameters: dict = field(default_factory=dict)
    image: str | None = None
    job_id: str | None = None
    lifecycle: JobLifecycle = field(default_factory=JobLifecycle, repr=False, compare=False)

    def __post_init__(self):
        if self.config is None:
            raise PreconditionError("Request must have an endpoint config.")

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    def set_image(self, image) -> None:
        """Attach a PIL image as a base64 PNG data URL (image-to-image jobs)."""
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        self.image = "data:image/png;base64," + encoded

    def to_payload(self) -> dict:
        """Build the submission body: `{prompt, image?, **parameters}`.

        Raises:
            PreconditionError: If a parameter name collides with a reserved key.
        """
        clashes = [key for key in self.parameters if key in RESERVED_PAYLOAD_KEYS]
        if clashes:
            raise PreconditionError(
                f"Parameter names clash with reserved fields: {', '.join(clashes)}"
            )
        payload = {"prompt": self.prompt}
        if self.image:
            payload["image"] = self.image
        payload.update(self.parameters)
        return payload
