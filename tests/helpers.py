"""Test doubles and small utilities shared across test modules."""

import asyncio
import io
from unittest.mock import MagicMock

from PIL import Image


def make_response(status_code=200, body=None, content=b"", text=""):
    """Build a `requests.Response` stand-in.

    `body` may be an exception instance, raised from `.json()`.
    """
    response = MagicMock()
    response.status_code = status_code
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    response.content = content
    response.text = text
    return response


def png_bytes(size=(4, 3), color="red"):
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


async def drain(rounds=5):
    """Let callbacks queued on the running loop execute."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def no_pause(seconds):
    return None
