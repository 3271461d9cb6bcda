import asyncio
import logging
from typing import Any

import requests

from deploy_common.models import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_ENVIRONMENT,
    LogEntry,
    Project,
    StatusReport,
)

from .errors import ApplicationError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:5000"
AUTH_HEADER = "x-auth-token"


class DeployClient:
    """
    Blocking client for the deploy API.

    Every endpoint wraps its payload as ``{"status", "message"?, "data"}``.
    Anything other than ``status == "success"`` is raised as an
    ApplicationError, even when the HTTP status is 200.
    """

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER_URL,
        api_key: str | None = None,
        timeout: float = 10.0,
    ):
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        if self.api_key:
            return {AUTH_HEADER: self.api_key}
        return {}

    def _request(
        self, method: str, path: str, action: str, json: dict | None = None
    ) -> dict[str, Any]:
        """Send one request and unwrap the response envelope."""
        url = f"{self.server_url}{path}"
        logger.debug(f"{method} {url}")
        try:
            response = requests.request(
                method, url, headers=self._headers(), json=json, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Error {action}: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None
        message = body.get("message") if isinstance(body, dict) else None

        if response.status_code >= 400:
            raise ApplicationError(
                f"Error {action}: HTTP {response.status_code}"
                + (f" ({message})" if message else ""),
                status_code=response.status_code,
                message=message,
            )
        if not isinstance(body, dict) or body.get("status") != "success":
            raise ApplicationError(
                f"Error {action}: {message or 'request was not successful'}",
                status_code=response.status_code,
                message=message,
            )
        return body.get("data") or {}

    def list_projects(self) -> list[Project]:
        data = self._request("GET", "/projects", "fetching projects")
        return [Project.from_dict(p) for p in data.get("projects") or []]

    def get_project(self, project_id: str) -> Project:
        data = self._request("GET", f"/project/{project_id}", "fetching project")
        return Project.from_dict(data["project"])

    def create_project(
        self,
        name: str,
        git_url: str,
        build_command: str = DEFAULT_BUILD_COMMAND,
        environment: str = DEFAULT_ENVIRONMENT,
        domain: str | None = None,
    ) -> Project:
        """
        Create a project (without deploying it).

        Raises:
            ValueError: If name or git_url is empty; no request is sent
        """
        if not name or not name.strip():
            raise ValueError("Project name is required")
        if not git_url or not git_url.strip():
            raise ValueError("Git URL is required")
        payload = {
            "name": name.strip(),
            "gitUrl": git_url.strip(),
            "buildCommand": build_command or DEFAULT_BUILD_COMMAND,
            "environment": environment or DEFAULT_ENVIRONMENT,
        }
        if domain:
            payload["domain"] = domain
        data = self._request("POST", "/project", "creating project", json=payload)
        return Project.from_dict(data["project"])

    def deploy(self, project_id: str) -> str:
        """Start a deployment for a project and return the new deployment ID."""
        data = self._request(
            "POST", "/deploy", "deploying project", json={"projectId": project_id}
        )
        return str(data["deployment_id"])

    def redeploy(self, deployment_id: str) -> str:
        """
        Re-run an existing deployment and return the new deployment ID.

        Some servers reuse the ID; in that case the original one is returned.
        """
        data = self._request(
            "POST",
            "/redeploy",
            "redeploying project",
            json={"deploymentId": deployment_id},
        )
        new_id = data.get("deployment_id")
        return str(new_id) if new_id else deployment_id

    def delete_project(self, project_id: str) -> None:
        self._request("DELETE", f"/project/{project_id}", "deleting project")

    def get_status(self, project_id: str) -> StatusReport:
        data = self._request(
            "GET", f"/project/{project_id}/status", "fetching deployment status"
        )
        return StatusReport.from_dict(data)

    def get_logs(self, deployment_id: str) -> list[LogEntry]:
        data = self._request(
            "GET", f"/logs/{deployment_id}", "fetching deployment logs"
        )
        return [LogEntry.from_dict(entry) for entry in data.get("logs") or []]


class AsyncDeployClient:
    """
    Asyncio adapter over DeployClient.

    Each call runs the blocking request in a worker thread so the event loop
    stays free while the network is busy.
    """

    def __init__(self, client: DeployClient):
        self.client = client

    async def list_projects(self) -> list[Project]:
        return await asyncio.to_thread(self.client.list_projects)

    async def get_project(self, project_id: str) -> Project:
        return await asyncio.to_thread(self.client.get_project, project_id)

    async def create_project(self, name: str, git_url: str, **kwargs: Any) -> Project:
        return await asyncio.to_thread(
            self.client.create_project, name, git_url, **kwargs
        )

    async def deploy(self, project_id: str) -> str:
        return await asyncio.to_thread(self.client.deploy, project_id)

    async def redeploy(self, deployment_id: str) -> str:
        return await asyncio.to_thread(self.client.redeploy, deployment_id)

    async def delete_project(self, project_id: str) -> None:
        await asyncio.to_thread(self.client.delete_project, project_id)

    async def get_status(self, project_id: str) -> StatusReport:
        return await asyncio.to_thread(self.client.get_status, project_id)

    async def get_logs(self, deployment_id: str) -> list[LogEntry]:
        return await asyncio.to_thread(self.client.get_logs, deployment_id)
