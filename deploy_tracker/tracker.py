"""
DeploymentTracker: the object a UI layer owns to follow deployments.

It holds the project and job caches, the observer registry and the completion
reconciler for one API client. Nothing here is module-global; two trackers
never share state.
"""

import logging
from dataclasses import replace

from deploy_client.client import AsyncDeployClient, DeployClient
from deploy_client.config import get_api_key, get_server_url
from deploy_common.models import (
    DEFAULT_BUILD_COMMAND,
    DEFAULT_ENVIRONMENT,
    RUNNING,
    Job,
    Project,
    utc_now,
)

from .cache import ResourceCache
from .config import TrackerSettings
from .reconciler import CompletionReconciler
from .registry import ObserverRegistry, WatchHandle

logger = logging.getLogger(__name__)


def _merge_jobs(existing: Job, incoming: Job) -> Job:
    return existing.merged_with(incoming)


def _merge_projects(existing: Project, incoming: Project) -> Project:
    return existing.merged_with(incoming)


class DeploymentTracker:
    """
    Entry point for fetching projects and watching their deployments.

    Args:
        api: Async deploy API client (see AsyncDeployClient)
        settings: Polling settings; defaults to TrackerSettings()
    """

    def __init__(self, api, settings: TrackerSettings | None = None):
        self.api = api
        self.settings = settings or TrackerSettings()
        self.jobs: ResourceCache[Job] = ResourceCache(
            merge=_merge_jobs, name="deployment"
        )
        self.projects: ResourceCache[Project] = ResourceCache(
            fetch=self._fetch_project, merge=_merge_projects, name="project"
        )
        self.reconciler = CompletionReconciler(self.jobs, self.projects)
        self.registry = ObserverRegistry(
            api, self.reconciler, self.jobs, self.settings
        )

    @classmethod
    def from_env(
        cls, server_url: str | None = None, api_key: str | None = None
    ) -> "DeploymentTracker":
        """Build a tracker from environment variables and ~/.deploy/config."""
        settings = TrackerSettings.from_env()
        client = DeployClient(
            server_url=get_server_url(server_url),
            api_key=get_api_key(api_key),
            timeout=settings.request_timeout,
        )
        return cls(AsyncDeployClient(client), settings)

    async def __aenter__(self) -> "DeploymentTracker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def close(self) -> None:
        """Stop every active session."""
        self.registry.close()

    async def aclose(self) -> None:
        await self.registry.aclose()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def _fetch_project(self, project_id: str) -> Project:
        project = await self.api.get_project(project_id)
        return self._sync_jobs(project)

    def _sync_jobs(self, project: Project) -> Project:
        """Feed a project's deployments through the job cache."""
        deployments = []
        for job in project.deployments:
            if job.project_id is None:
                job = replace(job, project_id=project.id)
            deployments.append(self.jobs.upsert(job))
        return replace(project, deployments=deployments)

    async def get_project(self, project_id: str, refresh: bool = False) -> Project | None:
        """
        Return a project, fetching it at most once across concurrent callers.

        Returns None if the fetch was cancelled.
        """
        return await self.projects.get(project_id, refresh=refresh)

    async def fetch_projects(self) -> list[Project]:
        projects = await self.api.list_projects()
        return self.projects.replace_all(self._sync_jobs(p) for p in projects)

    async def create_project(
        self,
        name: str,
        git_url: str,
        build_command: str = DEFAULT_BUILD_COMMAND,
        environment: str = DEFAULT_ENVIRONMENT,
        domain: str | None = None,
    ) -> tuple[str, str]:
        """
        Create a project and start its first deployment.

        Returns:
            (project_id, deployment_id)
        """
        project = await self.api.create_project(
            name,
            git_url,
            build_command=build_command,
            environment=environment,
            domain=domain,
        )
        self.projects.put(self._sync_jobs(project))
        deployment_id = await self.api.deploy(project.id)
        self._start_job(project.id, deployment_id)
        logger.info(f"Created project {project.id}, deployment {deployment_id}")
        return project.id, deployment_id

    async def deploy(self, project_id: str) -> str:
        deployment_id = await self.api.deploy(project_id)
        self._start_job(project_id, deployment_id)
        logger.info(f"Started deployment {deployment_id} for project {project_id}")
        return deployment_id

    async def rebuild_project(self, project_id: str) -> str:
        """
        Re-run the latest deployment of a project.

        Raises:
            LookupError: If the project has never been deployed
        """
        project = self.projects.peek(project_id) or await self.get_project(project_id)
        latest = project.latest_deployment if project else None
        if latest is None:
            raise LookupError(f"No deployment found for project {project_id}")

        deployment_id = await self.api.redeploy(latest.id)
        self._start_job(project_id, deployment_id)
        logger.info(
            f"Rebuilding project {project_id}: deployment {latest.id} -> {deployment_id}"
        )
        return deployment_id

    async def delete_project(self, project_id: str) -> None:
        await self.api.delete_project(project_id)
        project = self.projects.peek(project_id)
        self.projects.cancel(project_id)
        self.projects.invalidate(project_id)

        job_ids = {job.id for job in project.deployments} if project else set()
        job_ids.update(
            job.id for job in self.jobs.values() if job.project_id == project_id
        )
        for job_id in job_ids:
            self.registry.stop_job(job_id, "project deleted")
            self.jobs.invalidate(job_id)
        logger.info(f"Deleted project {project_id}")

    def _start_job(self, project_id: str, deployment_id: str) -> Job:
        """Record a freshly started deployment as the project's latest, running."""
        now = utc_now()
        job = Job(
            id=deployment_id,
            status=RUNNING,
            project_id=project_id,
            created_at=now,
            updated_at=now,
        )
        # A redeploy may reuse the id; the new run starts from a clean record
        self.jobs.put(job)
        project = self.projects.peek(project_id)
        if project is not None:
            history = [j for j in project.deployments if j.id != deployment_id]
            self.projects.put(replace(project, deployments=[job, *history]))
        return job

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    def attach(
        self,
        job_id: str,
        project_id: str | None = None,
        on_log_update=None,
        on_status_change=None,
        on_complete=None,
        on_error=None,
    ) -> WatchHandle:
        """Watch one deployment; see ObserverRegistry.attach."""
        return self.registry.attach(
            job_id,
            project_id=project_id,
            on_log_update=on_log_update,
            on_status_change=on_status_change,
            on_complete=on_complete,
            on_error=on_error,
        )

    async def watch_project(self, project_id: str, **callbacks) -> WatchHandle:
        """
        Watch the latest deployment of a project.

        Raises:
            LookupError: If the project has never been deployed
        """
        report = await self.api.get_status(project_id)
        job_id = report.latest_deployment_id
        if job_id is None:
            project = await self.get_project(project_id)
            latest = project.latest_deployment if project else None
            if latest is None:
                raise LookupError(f"No deployment found for project {project_id}")
            job_id = latest.id
        elif report.current_status:
            self.reconciler.record_status(job_id, report.current_status, project_id)
        return self.attach(job_id, project_id=project_id, **callbacks)
