"""
Observer registry: which watchers follow which deployment.

Every deployment has at most one live PollSession, however many watchers
(a list row, a detail page, a modal) are attached to it. The session's poller
task is its cancellation token: detaching the last watcher cancels that task
and nothing else.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from deploy_common.models import Job, LogEntry

from .cache import ResourceCache
from .config import TrackerSettings
from .poller import StatusPoller, TickUpdate, run_callback
from .reconciler import CompletionReconciler

logger = logging.getLogger(__name__)


class WatchHandle:
    """
    One watcher's view of a deployment.

    Attributes:
        job_id: Deployment being watched
        status: Latest known status
        logs: Full log set as of the latest tick
        last_error: Error of the latest failed tick, cleared on success
        completed: True once a terminal status has been delivered
        log_resets: Times the server restarted the log set. When this goes
            up, the ``new_entries`` passed to ``on_log_update`` in that same
            tick is the whole new log set, including lines that look like
            ones already delivered.
    """

    def __init__(
        self,
        registry: "ObserverRegistry",
        job_id: str,
        on_log_update=None,
        on_status_change=None,
        on_complete=None,
        on_error=None,
    ):
        self.job_id = job_id
        self.on_log_update = on_log_update
        self.on_status_change = on_status_change
        self.on_complete = on_complete
        self.on_error = on_error
        self.status: str | None = None
        self.logs: list[LogEntry] = []
        self.last_error: Exception | None = None
        self.completed = False
        self.detached = False
        self.log_resets = 0
        self._registry = registry
        self._ended = asyncio.Event()
        self._failed = False

    def detach(self) -> None:
        """Stop receiving updates. Safe to call more than once."""
        self._registry.detach(self)

    async def wait(self) -> str | None:
        """
        Wait until the session for this deployment ends.

        Returns:
            The terminal status, or the last known status if the session was
            torn down before finishing

        Raises:
            Exception: The error that made the session give up
        """
        await self._ended.wait()
        if self._failed and self.last_error is not None:
            raise self.last_error
        return self.status

    def _finish(self, status: str) -> None:
        self.status = status
        self.completed = True
        self._ended.set()

    def _end(self, error: Exception | None = None) -> None:
        if error is not None:
            self.last_error = error
            self._failed = True
        self._ended.set()


@dataclass
class PollSession:
    job_id: str
    poller: StatusPoller | None = None
    watchers: list[WatchHandle] = field(default_factory=list)
    terminal_detected: bool = False

    @property
    def tick_count(self) -> int:
        return self.poller.tick_count if self.poller else 0

    @property
    def last_observed_log_count(self) -> int:
        return self.poller.last_observed_log_count if self.poller else 0


class ObserverRegistry:
    """
    Map of deployment id -> watchers and their single PollSession.

    Args:
        api: Async deploy API client shared by all pollers
        reconciler: Finishes sessions that reach a terminal state
        jobs: Job cache, consulted so finished deployments are not re-polled
        settings: Polling settings for new sessions
    """

    def __init__(
        self,
        api,
        reconciler: CompletionReconciler,
        jobs: ResourceCache[Job],
        settings: TrackerSettings | None = None,
    ):
        self.api = api
        self.reconciler = reconciler
        self.jobs = jobs
        self.settings = settings or TrackerSettings()
        self._sessions: dict[str, PollSession] = {}

    def session(self, job_id: str) -> PollSession | None:
        return self._sessions.get(job_id)

    def active_job_ids(self) -> list[str]:
        return list(self._sessions)

    @property
    def active_poller_count(self) -> int:
        return sum(
            1
            for session in self._sessions.values()
            if session.poller is not None and session.poller.is_running
        )

    def attach(
        self,
        job_id: str,
        project_id: str | None = None,
        on_log_update=None,
        on_status_change=None,
        on_complete=None,
        on_error=None,
    ) -> WatchHandle:
        """
        Register a watcher for a deployment and return its handle.

        A deployment already known to be finished resolves at once from the
        cache, with no network call and no completion callbacks.
        """
        handle = WatchHandle(
            self,
            job_id,
            on_log_update=on_log_update,
            on_status_change=on_status_change,
            on_complete=on_complete,
            on_error=on_error,
        )

        cached = self.jobs.peek(job_id)
        if cached is not None and cached.is_terminal:
            logger.info(f"Deployment {job_id} already finished ({cached.status})")
            handle._finish(cached.status)
            return handle

        session = self._sessions.get(job_id)
        if session is not None:
            session.watchers.append(handle)
            handle.status = session.poller.status
            handle.logs = list(session.poller.tailer.entries)
            handle.last_error = session.poller.last_error
            logger.debug(
                f"Joined session for deployment {job_id} "
                f"({len(session.watchers)} watchers)"
            )
            return handle

        if project_id is None and cached is not None:
            project_id = cached.project_id
        session = PollSession(job_id=job_id, watchers=[handle])
        session.poller = StatusPoller(
            job_id,
            self.api,
            project_id=project_id,
            settings=self.settings,
            on_tick=lambda update: self._dispatch_tick(session, update),
            on_terminal=lambda poller, status: self._complete(session, status),
            on_error=lambda poller, error, fatal: self._dispatch_error(
                session, error, fatal
            ),
        )
        if cached is not None:
            session.poller.status = cached.status
            handle.status = cached.status
        self._sessions[job_id] = session
        session.poller.start()
        logger.info(f"Watching deployment {job_id}")
        return handle

    def detach(self, handle: WatchHandle) -> None:
        if handle.detached:
            return
        handle.detached = True
        session = self._sessions.get(handle.job_id)
        if session is None or handle not in session.watchers:
            return
        session.watchers.remove(handle)
        if not session.watchers and not session.terminal_detected:
            session.poller.stop("no watchers")
            self._release(session)
        handle._end()

    def stop_job(self, job_id: str, reason: str = "cancelled") -> None:
        """Tear down a session regardless of its watchers."""
        session = self._sessions.get(job_id)
        if session is None:
            return
        session.poller.stop(reason)
        self._release(session)
        for handle in session.watchers:
            handle._end()

    def close(self) -> None:
        for job_id in list(self._sessions):
            self.stop_job(job_id, "closed")

    async def aclose(self) -> None:
        pollers = [s.poller for s in self._sessions.values() if s.poller]
        self.close()
        for poller in pollers:
            await poller.wait_stopped()

    def _release(self, session: PollSession) -> None:
        if self._sessions.get(session.job_id) is session:
            del self._sessions[session.job_id]

    async def _complete(self, session: PollSession, status: str) -> None:
        await self.reconciler.complete(session, status)
        self._release(session)

    async def _dispatch_tick(self, session: PollSession, update: TickUpdate) -> None:
        if not update.terminal and update.status_changed and update.status:
            self.reconciler.record_status(
                session.job_id, update.status, session.poller.project_id
            )

        for handle in list(session.watchers):
            # An earlier watcher's callback may have detached this one
            if handle.detached:
                continue
            handle.logs = update.entries
            handle.last_error = None
            if update.log_reset:
                handle.log_resets += 1
            if update.status_changed:
                handle.status = update.status
            if update.new_entries and handle.on_log_update is not None:
                await self._safe_call(
                    handle, handle.on_log_update, update.new_entries, update.entries
                )
            if (
                update.status_changed
                and handle.on_status_change is not None
                and not handle.detached
            ):
                await self._safe_call(handle, handle.on_status_change, update.status)

    async def _dispatch_error(
        self, session: PollSession, error: Exception, fatal: bool
    ) -> None:
        watchers = list(session.watchers)
        if fatal:
            self._release(session)
        for handle in watchers:
            if handle.detached:
                continue
            handle.last_error = error
            if handle.on_error is not None:
                await self._safe_call(handle, handle.on_error, error)
            if fatal:
                handle._end(error)

    async def _safe_call(self, handle: WatchHandle, callback, *args) -> None:
        try:
            await run_callback(callback, *args)
        except Exception as e:
            logger.error(
                f"Watcher callback for deployment {handle.job_id} failed: {e}",
                exc_info=True,
            )
