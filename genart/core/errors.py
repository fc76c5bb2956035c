"""Error taxonomy shared by the job client, registry, and asset fetcher.

Architectural role:
    Gives every failure mode of a generation job its own exception type so that
    callers can tell "our call failed" (`TransportError`) apart from "the job
    itself failed" (`JobError`), and both apart from the two non-failure
    outcomes (`JobTimeoutError`, `JobCancelledError`).

Hierarchy:
    GenerationError (RuntimeError)
        PreconditionError (also ValueError)
        TransportError
        ProtocolError
            DecodeError
        JobError
        JobTimeoutError (also builtin TimeoutError)
        JobCancelledError
        InvalidTransitionError
        ContextCaptureError

Retry behavior:
    None of these are retried by the core. Retrying is a caller policy.
"""


class GenerationError(RuntimeError):
    """Base class for every error raised by `genart`."""


class PreconditionError(GenerationError, ValueError):
    """A required input is missing (no config, empty job id, empty api key)."""


class TransportError(GenerationError):
    """Non-2xx HTTP status or connectivity failure.

    Attributes:
        status_code: HTTP status when a response was received, else `None`.
        url: Request URL.
    """

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class ProtocolError(GenerationError):
    """Response body does not parse into the expected shape."""


class DecodeError(ProtocolError):
    """Downloaded bytes could not be decoded as an image."""


class JobError(GenerationError):
    """The remote API reported an application-level failure for the job.

    Raised even when the transport succeeded (an `error` field inside a 200).
    """

    def __init__(self, message: str, job_id: str | None = None):
        super().__init__(message)
        self.job_id = job_id


class JobTimeoutError(GenerationError, TimeoutError):
    """Polling ceiling reached without a terminal status.

    The job may still finish server-side; the result object is left as last seen.
    """

    def __init__(self, message: str, job_id: str | None = None, waited: float = 0.0):
        super().__init__(message)
        self.job_id = job_id
        self.waited = waited


class JobCancelledError(GenerationError):
    """Cooperative cancellation was observed."""


class InvalidTransitionError(GenerationError):
    """A lifecycle transition that the job state machine does not allow."""


class ContextCaptureError(GenerationError):
    """The owning execution context could not be captured at construction."""
