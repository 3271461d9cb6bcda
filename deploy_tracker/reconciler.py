"""
Completion reconciliation.

When a session first observes a terminal state the reconciler stops its
poller, writes the final status into the job cache (and the owning project's
deployment history), and runs every watcher's completion callback exactly
once, in registration order.
"""

import logging
from dataclasses import replace

from deploy_common.models import Job, Project, utc_now

from .cache import ResourceCache
from .poller import run_callback

logger = logging.getLogger(__name__)


class CompletionReconciler:
    """Propagate deployment status into the caches and notify watchers."""

    def __init__(self, jobs: ResourceCache[Job], projects: ResourceCache[Project]):
        self.jobs = jobs
        self.projects = projects

    def record_status(
        self, job_id: str, status: str, project_id: str | None = None
    ) -> Job:
        """
        Merge a newly observed status into the cached job and its project.

        A terminal status already in the cache is never replaced by an active
        one.
        """
        now = utc_now()
        cached = self.jobs.peek(job_id)
        if cached is None:
            job = Job(id=job_id, status=status, project_id=project_id, updated_at=now)
        else:
            job = cached.with_status(status, now)
            if job.project_id is None and project_id is not None:
                job = replace(job, project_id=project_id)
        job = self.jobs.upsert(job)

        owner = job.project_id or project_id
        project = self.projects.peek(owner) if owner else None
        if project is not None:
            self.projects.upsert(project.with_job(job))
        return job

    async def complete(self, session, status: str) -> bool:
        """
        Finish a session on its first terminal observation.

        Returns:
            False if the session had already been completed
        """
        if session.terminal_detected:
            return False
        session.terminal_detected = True

        session.poller.stop("terminal")
        job = self.record_status(session.job_id, status, session.poller.project_id)
        logger.info(
            f"Deployment {session.job_id} finished with {job.status}, "
            f"notifying {len(session.watchers)} watcher(s)"
        )

        for handle in list(session.watchers):
            handle._finish(job.status)
            if handle.on_complete is None or handle.detached:
                continue
            try:
                await run_callback(handle.on_complete, job.status)
            except Exception as e:
                logger.error(
                    f"Completion callback for deployment {session.job_id} failed: {e}",
                    exc_info=True,
                )
        return True
