"""Shared fixtures for the tracker unit tests."""

from unittest.mock import AsyncMock

import pytest

from deploy_common.models import LogEntry, StatusReport


class Script:
    """
    Side effect returning scripted values in order, then repeating the last.

    Exceptions in the script are raised instead of returned.
    """

    def __init__(self, *values):
        self.values = list(values)
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        value = self.values.pop(0) if len(self.values) > 1 else self.values[0]
        if isinstance(value, Exception):
            raise value
        return value


def make_logs(*messages: str) -> list[LogEntry]:
    return [LogEntry(message=message) for message in messages]


@pytest.fixture
def logs():
    """Build a list of LogEntry objects from messages."""
    return make_logs


@pytest.fixture
def script():
    return Script


@pytest.fixture
def mock_api():
    """Create a mock async deploy API with a running deployment and no logs."""
    api = AsyncMock()
    api.get_logs = AsyncMock(return_value=[])
    api.get_status = AsyncMock(
        return_value=StatusReport(current_status="running", latest_deployment_id="d1")
    )
    api.get_project = AsyncMock()
    api.list_projects = AsyncMock(return_value=[])
    api.create_project = AsyncMock()
    api.deploy = AsyncMock()
    api.redeploy = AsyncMock()
    api.delete_project = AsyncMock(return_value=None)
    return api
