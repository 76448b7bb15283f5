"""Shared pytest fixtures for unified runner tests."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add lib directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "lib"))

from unified_runner.config import RunnerConfig
from unified_runner.context import AssertionContext
from unified_runner.entities import DriverFactories, EntityRegistry


@pytest.fixture
def runner_config():
    """Config with short timeouts so waiting tests finish quickly."""
    return RunnerConfig(
        uri="mongodb://localhost:27017",
        thread_task_timeout=2.0,
        wait_for_event_timeout=0.5,
        event_poll_interval=0.01,
        primary_change_poll_interval=0.01,
    )


@pytest.fixture
def mock_factories():
    """Driver factories returning a fresh MagicMock per created object."""
    return DriverFactories(
        create_client=MagicMock(side_effect=lambda settings: MagicMock(name="client")),
        create_bucket=MagicMock(side_effect=lambda database, options: MagicMock(name="bucket")),
        create_client_encryption=MagicMock(
            side_effect=lambda client, options: MagicMock(name="client_encryption")
        ),
    )


@pytest.fixture
def registry(mock_factories, runner_config):
    """EntityRegistry backed by mock driver factories."""
    registry = EntityRegistry(mock_factories, runner_config)
    yield registry
    registry.close()


@pytest.fixture
def context():
    """Empty assertion context."""
    return AssertionContext()


@pytest.fixture
def sample_scenario():
    """Minimal scenario with one client, database and collection."""
    return {
        "description": "sample",
        "schemaVersion": "1.0",
        "createEntities": [
            {"client": {"id": "client0", "observeEvents": ["commandStartedEvent"]}},
            {"database": {"id": "database0", "client": "client0", "databaseName": "test"}},
            {"collection": {"id": "collection0", "database": "database0", "collectionName": "coll"}},
        ],
        "tests": [],
    }


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "p0: critical path tests"
    )
    config.addinivalue_line(
        "markers", "p1: important tests"
    )
