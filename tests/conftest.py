"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment variables are set before anything imports the settings module so
tests never read developer .env files or reach a real MongoDB.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("APP_RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "0")
os.environ.setdefault("MONGO_URI", "mongodb://localhost:27017")
os.environ.setdefault("MONGO_SERVER_SELECTION_TIMEOUT_MS", "50")

import pytest  # noqa: E402

from subtrack.core.rate_limit import reset_policy_stores  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_policy_stores():
    """Give every test empty counters for the application-wide policies."""
    reset_policy_stores()
    yield
    reset_policy_stores()
