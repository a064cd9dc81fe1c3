"""
Pytest configuration and fixtures for the query cache test suite.

This file provides:
- Path setup so `query_cache` imports from the project root
- Common fixtures (temporary directories, fake collaborators)
- Environment isolation for QUERY_CACHE_* variables
"""

import json
import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

# Add parent directory to path
BASE_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(BASE_DIR))

from query_cache.server.port_state import PortState  # noqa: E402


class DefinePlugin:
    """Stand-in for the build's define-values plugin."""

    def __init__(self, definitions=None):
        self.definitions = dict(definitions or {})


class UnrelatedPlugin:
    def __init__(self, name="unrelated"):
        self.name = name


class StubCoordinator:
    """Coordinator double that resolves a fixed port without binding sockets."""

    def __init__(self, port=4123):
        self.state = PortState()
        self._port = port
        self.calls = 0
        self.bind_attempts = 0

    async def ensure_started(self):
        self.calls += 1
        if not self.state.is_resolved:
            self.bind_attempts += 1
            self.state.resolve(self._port)
        return self.state.current


class FakeResponse:
    def __init__(self, body="", status_code=200, content_type="application/json"):
        self.status_code = status_code
        self.headers = {"content-type": content_type}
        self.content = body.encode("utf-8") if isinstance(body, str) else body


class FakeFetch:
    """Records upstream calls and answers with a JSON echo of the URL."""

    def __init__(self, status_code=200):
        self.calls = []
        self.status_code = status_code

    async def __call__(self, url, options=None):
        self.calls.append((url, dict(options or {})))
        body = json.dumps({"url": url, "call": len(self.calls)})
        return FakeResponse(body, status_code=self.status_code)


@pytest.fixture(scope="function")
def temp_dir():
    """Provide temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def fake_fetch():
    return FakeFetch()


@pytest.fixture
def stub_coordinator():
    return StubCoordinator()


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Keep host QUERY_CACHE_* settings out of the tests."""
    for name in list(os.environ):
        if name.startswith("QUERY_CACHE_") or name == "NEXT_QUERY_CACHE_PORT":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TEST_MODE", "true")


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: marks tests that bind real sockets"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Auto-mark tests based on file location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def define_plugin_cls():
    return DefinePlugin


@pytest.fixture
def unrelated_plugin_cls():
    return UnrelatedPlugin


@pytest.fixture
def fake_response_cls():
    return FakeResponse
