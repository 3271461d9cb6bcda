"""
Data models for deployments, projects and their logs.

These models represent the domain objects shared by the HTTP client and the
progress tracker, independent of how the deploy API encodes them on the wire.
The API speaks camelCase JSON; the models use snake_case and convert in
``from_dict``/``to_dict``.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

QUEUED = "queued"
RUNNING = "running"
SUCCESS = "success"
FAILURE = "failure"

ACTIVE_STATUSES = frozenset({QUEUED, RUNNING})
TERMINAL_STATUSES = frozenset({SUCCESS, FAILURE})

DEFAULT_BUILD_COMMAND = "npm run build"
DEFAULT_ENVIRONMENT = "node:18"

# Server spellings -> canonical status
_STATUS_ALIASES = {
    "success": SUCCESS,
    "succeeded": SUCCESS,
    "completed": SUCCESS,
    "deployed": SUCCESS,
    "failure": FAILURE,
    "failed": FAILURE,
    "error": FAILURE,
    "errored": FAILURE,
    "cancelled": FAILURE,
    "queued": QUEUED,
    "pending": QUEUED,
    "running": RUNNING,
    "building": RUNNING,
    "deploying": RUNNING,
    "in_progress": RUNNING,
}


def normalize_status(value: str | None) -> str | None:
    """
    Map a server-reported status string onto the canonical vocabulary.

    Unknown values are returned lower-cased and are treated as non-terminal.
    """
    if value is None:
        return None
    key = str(value).strip().lower()
    if not key:
        return None
    return _STATUS_ALIASES.get(key, key)


def is_terminal(status: str | None) -> bool:
    """Return True if the status is success or failure."""
    return status in TERMINAL_STATUSES


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (with optional trailing Z)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class LogEntry:
    """
    A single line of deployment output.

    The server may send the text under either ``message`` or ``log``.
    """

    message: str
    timestamp: datetime | None = None
    level: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert entry to dictionary format (for JSON serialization)."""
        result: dict[str, Any] = {
            "timestamp": format_timestamp(self.timestamp),
            "message": self.message,
        }
        if self.level is not None:
            result["level"] = self.level
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogEntry":
        """Create entry from the API's log format."""
        message = data.get("message")
        if message is None:
            message = data.get("log")
        return cls(
            message="" if message is None else str(message),
            timestamp=parse_timestamp(data.get("timestamp")),
            level=data.get("level"),
        )


@dataclass
class Job:
    """
    One execution of a project's build-and-deploy pipeline.

    Jobs progress through states: queued -> running -> success | failure.
    Once a terminal status is observed it is never replaced by an active one
    (see ``merged_with``).
    """

    id: str
    status: str = QUEUED
    project_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def with_status(self, status: str, updated_at: datetime | None = None) -> "Job":
        """Return a copy carrying a new status, respecting monotonicity."""
        if self.is_terminal and not is_terminal(status):
            return self
        return replace(self, status=status, updated_at=updated_at or utc_now())

    def merged_with(self, incoming: "Job") -> "Job":
        """
        Merge a newer observation of this job into the cached copy.

        The incoming copy wins, except that a terminal status is never
        reverted to queued/running by a stale read.
        """
        if self.is_terminal and not incoming.is_terminal:
            return replace(
                incoming,
                status=self.status,
                updated_at=self.updated_at or incoming.updated_at,
                project_id=incoming.project_id or self.project_id,
            )
        return replace(
            incoming,
            project_id=incoming.project_id or self.project_id,
            created_at=incoming.created_at or self.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert job to dictionary format (for API responses)."""
        return {
            "id": self.id,
            "projectId": self.project_id,
            "status": self.status,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], project_id: str | None = None) -> "Job":
        """Create job from the API's deployment format."""
        return cls(
            id=str(data["id"]),
            status=normalize_status(data.get("status")) or QUEUED,
            project_id=data.get("projectId") or data.get("project_id") or project_id,
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )


@dataclass
class Project:
    """
    A deployable project and its deployment history.

    ``deployments[0]`` is the most recent job.
    """

    id: str
    name: str
    git_url: str = ""
    build_command: str = DEFAULT_BUILD_COMMAND
    environment: str = DEFAULT_ENVIRONMENT
    domain: str | None = None
    deployments: list[Job] = field(default_factory=list)

    @property
    def latest_deployment(self) -> Job | None:
        return self.deployments[0] if self.deployments else None

    @property
    def active_deployment(self) -> Job | None:
        """The queued/running job, if any."""
        latest = self.latest_deployment
        if latest is not None and latest.is_active:
            return latest
        return None

    def with_job(self, job: Job) -> "Project":
        """
        Return a copy with ``job`` merged into the deployment history.

        A job already in the history is replaced in place; a new one becomes
        the most recent deployment.
        """
        deployments = list(self.deployments)
        for index, existing in enumerate(deployments):
            if existing.id == job.id:
                deployments[index] = existing.merged_with(job)
                break
        else:
            deployments.insert(0, job)
        return replace(self, deployments=deployments)

    def merged_with(self, incoming: "Project") -> "Project":
        """Merge a fresh copy, keeping each known deployment's status monotonic."""
        known = {job.id: job for job in self.deployments}
        deployments = [
            known[job.id].merged_with(job) if job.id in known else job
            for job in incoming.deployments
        ]
        return replace(incoming, deployments=deployments)

    def to_dict(self) -> dict[str, Any]:
        """Convert project to dictionary format (for API requests/JSON output)."""
        return {
            "id": self.id,
            "name": self.name,
            "gitUrl": self.git_url,
            "buildCommand": self.build_command,
            "environment": self.environment,
            "domain": self.domain,
            "deployments": [job.to_dict() for job in self.deployments],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create project from the API's project format."""
        project_id = str(data["id"])
        return cls(
            id=project_id,
            name=data.get("name", ""),
            git_url=data.get("gitUrl", ""),
            build_command=data.get("buildCommand") or DEFAULT_BUILD_COMMAND,
            environment=data.get("environment") or DEFAULT_ENVIRONMENT,
            domain=data.get("domain"),
            deployments=[
                Job.from_dict(job, project_id=project_id)
                for job in data.get("deployments") or []
            ],
        )


@dataclass
class StatusReport:
    """Result of ``GET /project/{id}/status``."""

    current_status: str | None
    latest_deployment_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StatusReport":
        latest = data.get("latestDeployment") or {}
        latest_id = latest.get("id")
        return cls(
            current_status=normalize_status(data.get("currentStatus")),
            latest_deployment_id=None if latest_id is None else str(latest_id),
        )
