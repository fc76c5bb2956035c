"""Endpoint and runtime configuration for image-generation jobs.

Architectural role:
    Centralizes endpoint selection, credential lookup, and timing tunables for
    `genart.image.client`, `genart.image.rate_limiter`, the registry, and the
    RunPod runner.

Resolution:
    Values are read from the process environment (after `load_dotenv()`) at
    import time. API keys are resolved lazily by `load_key`, so key files may
    be created after import.

Failure behavior:
    Missing key material is represented as an empty `api_key`; the job client
    rejects such configs with `PreconditionError` before any network call.
"""

import os
from dotenv import load_dotenv

from genart.core.job_types import EndpointConfig

load_dotenv()

# Active endpoint selection.
IMAGE_ENDPOINT = os.getenv("IMAGE_ENDPOINT", "doubtech")

# Known generation backends. Paths are appended to `host`.
IMAGE_ENDPOINTS = {

    "doubtech": {
        "name": "DoubTech.ai",
        "host": os.getenv("IMAGE_HOST", "https://api.aiart.doubtech.com"),
        "job_path": os.getenv("IMAGE_JOB_PATH", "/art-api/job"),
        "status_path": os.getenv("IMAGE_STATUS_PATH", "/art-api/status"),
        "key_file": "config/doubtech.key"
    },

    "local": {
        "name": "Local",
        "host": "http://127.0.0.1:7860",
        "job_path": "/art-api/job",
        "status_path": "/art-api/status",
        "key_file": "config/local.key"
    }

}

# Timing. Poll interval and ceilings are in seconds.
RATE_LIMIT_SECONDS = float(os.getenv("IMAGE_RATE_LIMIT_SECONDS", "1"))
STATUS_POLL_SECONDS = float(os.getenv("IMAGE_STATUS_POLL_SECONDS", "5"))
MAX_WAIT_SECONDS = float(os.getenv("IMAGE_MAX_WAIT_SECONDS", "60"))
TRACKED_MAX_WAIT_SECONDS = float(os.getenv("IMAGE_TRACKED_MAX_WAIT_SECONDS", "300"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("IMAGE_HTTP_TIMEOUT_SECONDS", "120"))

# Simple-caller generation defaults.
BASE_RESOLUTION = int(os.getenv("IMAGE_BASE_RESOLUTION", "512"))

# RunPod serverless endpoint (no /run or /status suffix).
RUNPOD_ENDPOINT_URL = os.getenv("RUNPOD_ENDPOINT_URL", "")
RUNPOD_KEY_FILE = "config/runpod.key"


def load_key(path):
    """Load an API key from environment override or key file.

    Resolution order:
        1. Environment variable inferred from the file stem (for example
           `config/doubtech.key` -> `DOUBTECH_API_KEY`).
        2. Raw file contents at `path`.

    Edge cases:
        - `None` path returns `None`.
        - Missing file returns `None`.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value:
        return env_value
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip()


def load_endpoint_config(name=None) -> EndpointConfig:
    """Build the `EndpointConfig` for `name` (defaults to `IMAGE_ENDPOINT`).

    Raises:
        ValueError: Unknown endpoint name.
    """
    name = name or IMAGE_ENDPOINT
    settings = IMAGE_ENDPOINTS.get(name)
    if not settings:
        raise ValueError(f"Unknown image endpoint: {name}")

    return EndpointConfig(
        name=settings["name"],
        host=settings["host"],
        job_path=settings["job_path"],
        status_path=settings["status_path"],
        api_key=load_key(settings.get("key_file")) or "",
    )
