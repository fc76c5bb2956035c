"""Shared pytest fixtures for genart tests."""

from unittest.mock import MagicMock

import pytest

from genart.core.job_types import EndpointConfig
from genart.image.client import JobClient
from genart.image.rate_limiter import RateLimiter

from tests.helpers import png_bytes


# ============================================================================
# Endpoint / Transport Fixtures
# ============================================================================


@pytest.fixture
def endpoint() -> EndpointConfig:
    return EndpointConfig(
        name="Test",
        host="http://api.test",
        job_path="/job",
        status_path="/status",
        api_key="secret",
    )


@pytest.fixture
def session():
    """Mock `requests.Session`; tests set `post`/`get` behavior."""
    return MagicMock()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    return RateLimiter(interval=0)


@pytest.fixture
def client(session, rate_limiter) -> JobClient:
    return JobClient(session=session, rate_limiter=rate_limiter)


# ============================================================================
# Image Fixtures
# ============================================================================


@pytest.fixture
def png() -> bytes:
    """Small valid PNG payload (4x3 RGB)."""
    return png_bytes()
