"""
Root-level pytest configuration for Repo Discovery.

Configures:
- Custom markers (integration, etc.)
- Test environment setup

asyncio_mode is "auto" (see pyproject.toml), so async tests and fixtures
run under pytest-asyncio without extra decorators.
"""

import logging

import pytest


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    # Register custom markers to avoid warnings
    config.addinivalue_line(
        "markers",
        "integration: marks tests as end-to-end tests across several components"
    )


@pytest.fixture(autouse=True)
def _quiet_http_logs():
    """Keep per-request httpx logging out of captured test output."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    yield
