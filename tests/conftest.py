"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from hemisphere.runtime.connectivity import ConnectivityMonitor  # noqa: E402
from hemisphere.runtime.models import (  # noqa: E402
    ResponseModality,
    SessionStage,
    UserResponse,
)
from hemisphere.runtime.outbox import Outbox, RetryPolicy  # noqa: E402
from hemisphere.runtime.scheduler import ManualScheduler  # noqa: E402
from hemisphere.runtime.storage import MemoryStorage  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def scheduler():
    """Virtual clock starting at a fixed, realistic timestamp."""
    return ManualScheduler(start_ms=1_700_000_000_000)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def outbox(storage, scheduler, connectivity):
    """Outbox with zero jitter (rand() == 0.5) so delays are exact."""
    box = Outbox(
        storage=storage,
        scheduler=scheduler,
        connectivity=connectivity,
        policy=RetryPolicy(),
        rand=lambda: 0.5,
    )
    yield box
    box.close()


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        storage_dir=tmp_path / "storage",
        api_base_url="http://api.test",
        api_key="test-key",
        log_file=None,
    )


@pytest.fixture
def make_response():
    """Factory for UserResponse payloads."""
    counter = {"n": 0}

    def _make(item_id=None, is_correct=True, stage=SessionStage.ANALYSIS, **overrides):
        counter["n"] += 1
        n = counter["n"]
        data = dict(
            id=f"resp-{n}",
            item_id=item_id or f"item-{n}",
            stage=stage,
            started_at=1_700_000_000_000,
            submitted_at=1_700_000_001_500,
            latency_ms=1_500,
            modality=ResponseModality.MULTIPLE_CHOICE,
            value="b",
            is_correct=is_correct,
        )
        data.update(overrides)
        return UserResponse(**data)

    return _make


class RecordingTransport:
    """Async transport double: scripted outcomes, records every call."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []

    async def __call__(self, response):
        self.calls.append(response.id)
        outcome = self.outcomes.pop(0) if self.outcomes else f"srv-{response.id}"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def transport_factory():
    return RecordingTransport
