"""
Command-line adapter for submitting one image-generation job.

Architectural role:
- Owns the event loop that acts as the owning context for the run.
- Builds the executor, client, fetcher, and registry, then delegates the job
  to `TaskRegistry.generate`.
- Prints lifecycle events and decoded image metadata as they arrive.

Request lifecycle:
1. Parse arguments (`prompt`, endpoint, `--param key=value` pairs).
2. Resolve the endpoint config from environment/key files.
3. Submit through the registry and poll until a terminal outcome.
4. Print each decoded image's size/mode on the owning thread.

Input validation behavior:
- Unknown endpoint names and malformed `--param` values are argparse errors.
- Missing API keys surface as a precondition failure before any request.

Error handling strategy:
- Generation failures print a one-line error and exit with status 1.
- Timeouts exit with status 2; Ctrl-C cancels the task and exits with 130.

Side effects:
- Network calls only; images are not written to disk.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import asyncio
import json
import logging
import os
import sys

from PIL import Image

from genart.core.errors import GenerationError, JobTimeoutError
from genart.core.executor import DualContextExecutor
from genart.core.job_types import JobRequest
from genart.core.registry import TaskRegistry
from genart.image.client import JobClient
from genart.image.fetcher import AssetFetcher
from genart.image.provider_config import (
    IMAGE_ENDPOINT,
    IMAGE_ENDPOINTS,
    STATUS_POLL_SECONDS,
    TRACKED_MAX_WAIT_SECONDS,
    load_endpoint_config,
)


logger = logging.getLogger(__name__)


# =========================================================
# ARGUMENTS
# =========================================================

def parse_param(text):
    """Parse `key=value`; values are JSON when they parse, else plain strings."""
    if "=" not in text:
        raise argparse.ArgumentTypeError(f"Expected key=value, got {text!r}")
    key, raw = text.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError(f"Missing parameter name in {text!r}")
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    return key, value


def build_parser():
    parser = argparse.ArgumentParser(prog="genart", description="Submit an image-generation job")
    parser.add_argument("prompt", help="Prompt text")
    parser.add_argument(
        "--endpoint",
        default=IMAGE_ENDPOINT,
        choices=sorted(IMAGE_ENDPOINTS),
        help="Configured endpoint name",
    )
    parser.add_argument(
        "--param",
        action="append",
        type=parse_param,
        default=[],
        metavar="KEY=VALUE",
        help="Extra job parameter (repeatable)",
    )
    parser.add_argument("--image", default=None, help="Source image for image-to-image jobs")
    parser.add_argument("--max-wait", type=float, default=TRACKED_MAX_WAIT_SECONDS)
    parser.add_argument("--poll-interval", type=float, default=STATUS_POLL_SECONDS)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


# =========================================================
# RUN
# =========================================================

def print_image(index, image):
    print(f"Image {index}: {image.size[0]}x{image.size[1]} {image.mode} ({image.info.get('source', '')})")


async def run(args):
    """Generate images for `args.prompt`; returns the decoded images."""
    config = load_endpoint_config(args.endpoint)
    logger.debug("Using endpoint %s (%s)", config.name, config.host)

    executor = DualContextExecutor()
    client = JobClient()
    fetcher = AssetFetcher(executor)
    registry = TaskRegistry(executor, client, fetcher, max_wait=args.max_wait)

    registry.events.started.add_listener(lambda task: print(f"Started: {task.description}"))
    registry.events.completed.add_listener(lambda task: print(f"Finished: {task.outcome.value}"))

    request = JobRequest(config=config, prompt=args.prompt, parameters=dict(args.param))
    if args.image:
        with Image.open(args.image) as source:
            request.set_image(source)

    try:
        return await registry.generate(request, poll_interval=args.poll_interval, on_image=print_image)
    except asyncio.CancelledError:
        registry.cancel_all()
        raise
    finally:
        executor.shutdown(wait=False)


def main(argv=None):
    """
    CLI entrypoint.

    Returns:
        Process exit status (0 success, 1 failure, 2 timeout, 130 interrupted).
    """
    args = build_parser().parse_args(argv)

    verbose = args.verbose or os.getenv("DEBUG") == "true"
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        images = asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130
    except JobTimeoutError as err:
        print(f"Timed out: {err}")
        return 2
    except (GenerationError, ValueError) as err:
        # ValueError: unknown endpoint name from the environment.
        print(f"Generation failed: {err}")
        return 1

    print(f"{len(images)} image(s) received.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
