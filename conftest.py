"""Pytest configuration and shared fixtures."""

import pytest

# Load env vars
from dotenv import load_dotenv
load_dotenv()

from services.ownership import workflow


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "no_db: mark test as not needing any external service")
    config.addinivalue_line("markers", "integration: mark test as integration test (hits external services)")
    config.addinivalue_line("markers", "online: mark test as online test (hits external APIs)")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture(autouse=True)
def reset_shutdown_flag():
    """The shutdown flag is process-wide; never let one test leak it into the next."""
    workflow.clear_shutdown()
    yield
    workflow.clear_shutdown()
