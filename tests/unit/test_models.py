"""
Unit tests for deploy_common.models.

Tests wire-format parsing, status normalisation and status monotonicity.
"""

from datetime import UTC, datetime

import pytest

from deploy_common.models import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_ENVIRONMENT,
    Job,
    LogEntry,
    Project,
    StatusReport,
    is_terminal,
    normalize_status,
    parse_timestamp,
)


class TestNormalizeStatus:
    """Test suite for normalize_status function."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("SUCCESS", "success"),
            ("completed", "success"),
            ("Failed", "failure"),
            ("error", "failure"),
            ("pending", "queued"),
            ("Building", "running"),
            ("  running ", "running"),
        ],
    )
    def test_known_spellings(self, raw, expected):
        """Test that server spellings map onto the canonical statuses."""
        assert normalize_status(raw) == expected

    def test_unknown_status_is_lowercased(self):
        """Test that unknown statuses pass through lower-cased."""
        assert normalize_status("Paused") == "paused"
        assert not is_terminal("paused")

    def test_empty_values(self):
        """Test that missing statuses normalise to None."""
        assert normalize_status(None) is None
        assert normalize_status("") is None


class TestJob:
    """Test suite for Job model."""

    def test_from_dict_camel_case(self):
        """Test parsing a deployment from the API format."""
        job = Job.from_dict(
            {
                "id": 42,
                "status": "RUNNING",
                "createdAt": "2024-01-15T10:00:00Z",
            },
            project_id="p1",
        )

        assert job.id == "42"
        assert job.status == "running"
        assert job.project_id == "p1"
        assert job.created_at == datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        assert job.updated_at is None

    def test_missing_status_defaults_to_queued(self):
        """Test that a deployment without status is treated as queued."""
        assert Job.from_dict({"id": "d1"}).status == "queued"

    def test_merge_never_reverts_terminal_status(self):
        """Test that a stale running copy does not undo success."""
        done = Job(id="d1", status="success", project_id="p1")
        stale = Job(id="d1", status="running")

        merged = done.merged_with(stale)

        assert merged.status == "success"
        assert merged.project_id == "p1"

    def test_merge_accepts_progress(self):
        """Test that active -> terminal and active -> active updates apply."""
        running = Job(id="d1", status="running")

        assert running.merged_with(Job(id="d1", status="failure")).status == "failure"
        assert Job(id="d1", status="queued").merged_with(running).status == "running"

    def test_with_status_is_monotonic(self):
        """Test that with_status ignores an active status after a terminal one."""
        done = Job(id="d1", status="success")

        assert done.with_status("running") is done
        assert done.with_status("failure").status == "failure"

    def test_with_status_sets_updated_at(self):
        """Test that with_status stamps the update time."""
        when = datetime(2024, 1, 1, tzinfo=UTC)
        job = Job(id="d1", status="running").with_status("success", when)

        assert job.updated_at == when


class TestProject:
    """Test suite for Project model."""

    def test_from_dict(self):
        """Test parsing a project with its deployment history."""
        project = Project.from_dict(
            {
                "id": "p1",
                "name": "web",
                "gitUrl": "https://github.com/acme/web.git",
                "buildCommand": "make",
                "environment": "python:3.12",
                "domain": "web.example.com",
                "deployments": [
                    {"id": "d2", "status": "running"},
                    {"id": "d1", "status": "success"},
                ],
            }
        )

        assert project.git_url == "https://github.com/acme/web.git"
        assert project.build_command == "make"
        assert [job.id for job in project.deployments] == ["d2", "d1"]
        assert all(job.project_id == "p1" for job in project.deployments)
        assert project.latest_deployment.id == "d2"
        assert project.active_deployment.id == "d2"

    def test_defaults(self):
        """Test that missing optional fields get the form defaults."""
        project = Project.from_dict({"id": "p1", "name": "web"})

        assert project.build_command == DEFAULT_BUILD_COMMAND
        assert project.environment == DEFAULT_ENVIRONMENT
        assert project.deployments == []
        assert project.latest_deployment is None
        assert project.active_deployment is None

    def test_with_job_replaces_existing(self):
        """Test that a known job is updated in place."""
        project = Project(
            id="p1",
            name="web",
            deployments=[Job(id="d2", status="running"), Job(id="d1", status="success")],
        )

        updated = project.with_job(Job(id="d2", status="success"))

        assert [job.id for job in updated.deployments] == ["d2", "d1"]
        assert updated.deployments[0].status == "success"
        # Original untouched
        assert project.deployments[0].status == "running"

    def test_with_job_prepends_new(self):
        """Test that an unknown job becomes the latest deployment."""
        project = Project(id="p1", name="web", deployments=[Job(id="d1")])

        updated = project.with_job(Job(id="d2", status="running"))

        assert updated.latest_deployment.id == "d2"
        assert len(updated.deployments) == 2

    def test_merged_with_keeps_deployment_status_monotonic(self):
        """Test that a stale project read does not revert a finished job."""
        cached = Project(id="p1", name="web", deployments=[Job(id="d1", status="success")])
        stale = Project(id="p1", name="web-renamed", deployments=[Job(id="d1", status="running")])

        merged = cached.merged_with(stale)

        assert merged.name == "web-renamed"
        assert merged.deployments[0].status == "success"

    def test_to_dict_uses_wire_names(self):
        """Test that serialisation uses the API's camelCase keys."""
        data = Project(id="p1", name="web", git_url="git@x:y.git").to_dict()

        assert data["gitUrl"] == "git@x:y.git"
        assert data["buildCommand"] == DEFAULT_BUILD_COMMAND
        assert data["deployments"] == []


class TestLogEntry:
    """Test suite for LogEntry model."""

    def test_message_field(self):
        """Test parsing an entry with a message field."""
        entry = LogEntry.from_dict(
            {"timestamp": "2024-01-15T10:00:00Z", "message": "Cloning", "level": "info"}
        )

        assert entry.message == "Cloning"
        assert entry.level == "info"
        assert entry.timestamp.year == 2024

    def test_log_field_fallback(self):
        """Test that the alternate 'log' field is accepted."""
        entry = LogEntry.from_dict({"log": "Installing dependencies"})

        assert entry.message == "Installing dependencies"
        assert entry.timestamp is None
        assert entry.level is None

    def test_missing_text(self):
        """Test that an entry without text becomes an empty message."""
        assert LogEntry.from_dict({}).message == ""

    def test_to_dict_omits_missing_level(self):
        """Test that level is only serialised when present."""
        assert "level" not in LogEntry(message="x").to_dict()


class TestStatusReport:
    """Test suite for StatusReport model."""

    def test_from_dict(self):
        """Test parsing the status endpoint payload."""
        report = StatusReport.from_dict(
            {"currentStatus": "SUCCESS", "latestDeployment": {"id": 7}}
        )

        assert report.current_status == "success"
        assert report.latest_deployment_id == "7"

    def test_without_deployment(self):
        """Test a project that was never deployed."""
        report = StatusReport.from_dict({"currentStatus": None, "latestDeployment": None})

        assert report.current_status is None
        assert report.latest_deployment_id is None


def test_parse_timestamp_invalid():
    """Test that unparseable timestamps become None."""
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None
