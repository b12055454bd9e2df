"""Shared fixtures."""

import pytest

from ride_insights.config import Settings


@pytest.fixture
def settings():
    """Settings with a test API key and defaults for everything else."""
    return Settings(api_key="test-key", api_base_url="https://inference.test/v1")
