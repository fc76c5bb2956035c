"""Result-asset download and decode.

Processing flow (`fetch_all`):
    1. For each URL, in input order and one at a time:
       a. stop if the cancellation flag is set,
       b. download the bytes (worker thread),
       c. decode them into a `PIL.Image.Image` (worker thread),
       d. stop again if the flag was set while the download ran,
       e. hand the image to `on_image(index, image)` on the owning thread and
          wait until that delivery has run.
    2. Unless cancelled, hand the full ordered list to `on_images(images)` on
       the owning thread.

Failure policy:
    Abort-all. If any URL fails to download or decode, the error propagates,
    `on_images` is never called, and no partial list is returned. Per-item
    deliveries that already ran for earlier URLs are not retracted.

Base64:
    `decode_base64_image` accepts raw base64 or `data:` URLs, for backends that
    inline the image in the status response instead of returning a URL.
"""

import base64
import binascii
import io
import logging

import requests
from PIL import Image, UnidentifiedImageError

from genart.core.errors import DecodeError, JobCancelledError, TransportError
from genart.image.provider_config import HTTP_TIMEOUT_SECONDS


logger = logging.getLogger(__name__)


def decode_image(data: bytes, name: str | None = None):
    """Decode image bytes into a fully loaded PIL image.

    Raises:
        DecodeError: Empty or unrecognized data.
    """
    if not data:
        raise DecodeError(f"No image data received for {name or 'image'}")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as err:
        raise DecodeError(f"Could not decode image {name or ''}".strip()) from err
    if name:
        image.info["source"] = name
    return image


def decode_base64_image(encoded: str, name: str | None = None):
    """Decode a base64 string or `data:` URL into a PIL image."""
    if encoded and encoded.startswith("data:"):
        encoded = encoded.split(",", 1)[-1]
    try:
        data = base64.b64decode(encoded or "", validate=True)
    except (binascii.Error, ValueError) as err:
        raise DecodeError("Image payload is not valid base64") from err
    return decode_image(data, name)


class AssetFetcher:
    """Downloads result URLs and delivers decoded images to the owning thread.

    Args:
        executor: `DualContextExecutor` used for owning-thread delivery. May be
            `None` when only `fetch_one` is used.
        session: `requests.Session` (or compatible).
        timeout: Per-download timeout in seconds.
    """

    def __init__(self, executor=None, session=None, timeout: float = HTTP_TIMEOUT_SECONDS):
        self.executor = executor
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_one(self, url: str):
        """Download `url` and decode it. Blocking; run on a worker."""
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as err:
            raise TransportError(f"Download {url} failed: {err}", url=url) from err

        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Download {url} failed with status code {response.status_code}",
                status_code=response.status_code,
                url=url,
            )

        return decode_image(response.content, name=url)

    def fetch_all(self, urls, on_image=None, on_images=None, cancelled=None) -> list:
        """Fetch every URL in order; see module docstring for delivery rules.

        Raises:
            JobCancelledError: `cancelled` was set; nothing further is
                delivered once it is observed.
            TransportError / DecodeError: First failing URL.
        """
        images = []
        for index, url in enumerate(urls):
            if cancelled is not None and cancelled.is_set():
                raise JobCancelledError(f"Asset fetch cancelled before item {index}.")

            image = self.fetch_one(url)
            if cancelled is not None and cancelled.is_set():
                raise JobCancelledError(f"Asset fetch cancelled during item {index}.")
            images.append(image)
            logger.debug("Fetched asset %d/%d from %s (%s)", index + 1, len(urls), url, image.size)

            if on_image is not None:
                self._deliver(on_image, index, image)

        if cancelled is not None and cancelled.is_set():
            raise JobCancelledError("Asset fetch cancelled before final delivery.")
        if on_images is not None:
            self._deliver(on_images, list(images))
        return images

    def _deliver(self, callback, *args):
        if self.executor is None:
            callback(*args)
            return
        # Wait for the owning thread so deliveries stay in fetch order.
        self.executor.foreground(callback, *args).result()
