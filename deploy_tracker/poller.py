"""
Adaptive polling loop for a single deployment.

Each tick fetches the structured status (when the owning project is known)
and then the log set, strictly one after the other. The loop waits for a tick
to settle before sleeping, so ticks of one poller never overlap; an
out-of-band ``poke`` that arrives while a tick is still fetching is skipped.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum

from deploy_client.errors import ApplicationError
from deploy_common.models import LogEntry, StatusReport, is_terminal

from .config import TrackerSettings
from .tailer import LogTailer

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    IDLE = "idle"
    ATTACHED = "attached"
    POLLING = "polling"
    SLOWED = "slowed"
    STOPPED = "stopped"


@dataclass
class TickUpdate:
    """What one tick observed."""

    tick: int
    status: str | None
    status_changed: bool
    new_entries: list[LogEntry] = field(default_factory=list)
    entries: list[LogEntry] = field(default_factory=list)
    terminal: str | None = None
    heuristic: bool = False  # terminal came from log text, not the status field
    log_reset: bool = False  # new_entries is the whole log set again


async def run_callback(callback, *args) -> None:
    """Call a plain or coroutine function, awaiting the result if needed."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class StatusPoller:
    """
    Poll status and logs of one deployment until it finishes or is stopped.

    Callbacks (plain or coroutine functions):
        on_tick(update): after every completed tick
        on_terminal(poller, status): once, when a terminal state is observed
        on_error(poller, exc, fatal): after a failed tick
    """

    def __init__(
        self,
        job_id: str,
        api,
        project_id: str | None = None,
        settings: TrackerSettings | None = None,
        tailer: LogTailer | None = None,
        on_tick=None,
        on_terminal=None,
        on_error=None,
    ):
        self.job_id = job_id
        self.project_id = project_id
        self.api = api
        self.settings = settings or TrackerSettings()
        self.tailer = tailer or LogTailer(api=api, deployment_id=job_id)
        self._on_tick = on_tick
        self._on_terminal = on_terminal
        self._on_error = on_error

        self.state = PollerState.IDLE
        self.interval = self.settings.base_interval
        self.status: str | None = None
        self.tick_count = 0
        self.skipped_ticks = 0
        self.unchanged_ticks = 0
        self.consecutive_errors = 0
        self.last_error: Exception | None = None
        self.stop_reason: str | None = None
        self._terminal_reported = False
        self._tick_in_flight = False
        self._task: asyncio.Task | None = None
        self._pokes: set[asyncio.Task] = set()

    @property
    def last_observed_log_count(self) -> int:
        return self.tailer.seen_count

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self) -> None:
        if self.state is PollerState.IDLE:
            self.state = PollerState.ATTACHED

    def start(self) -> None:
        """Begin polling: one tick right away, then one per interval."""
        if self.state is PollerState.STOPPED:
            raise RuntimeError(f"Poller for deployment {self.job_id} already stopped")
        if self._task is not None:
            logger.warning(f"Poller for deployment {self.job_id} already running")
            return
        self.attach()
        self.state = PollerState.POLLING
        self._task = asyncio.create_task(
            self._run_loop(), name=f"deploy-poller-{self.job_id}"
        )
        logger.info(f"Started polling deployment {self.job_id}")

    def stop(self, reason: str = "stopped") -> None:
        """
        Stop polling. No tick starts after this returns, and the result of a
        fetch still in flight is discarded.
        """
        if self.state is PollerState.STOPPED:
            return
        self.state = PollerState.STOPPED
        self.stop_reason = reason
        current = asyncio.current_task()
        for task in [self._task, *self._pokes]:
            if task is not None and not task.done() and task is not current:
                task.cancel()
        logger.info(
            f"Stopped polling deployment {self.job_id} ({reason}) "
            f"after {self.tick_count} ticks"
        )

    async def wait_stopped(self) -> None:
        """Wait for the loop task to wind down after stop()."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def poke(self) -> asyncio.Task | None:
        """Request an extra tick now, e.g. for a manual refresh."""
        if self.state is PollerState.STOPPED:
            return None
        task = asyncio.create_task(self.tick())
        self._pokes.add(task)
        task.add_done_callback(self._pokes.discard)
        return task

    async def _run_loop(self) -> None:
        while self.state is not PollerState.STOPPED:
            await self.tick()
            if self.state is PollerState.STOPPED:
                break
            await asyncio.sleep(self.interval)

    async def tick(self) -> bool:
        """
        Perform one status+log fetch.

        Returns:
            False if the tick was skipped (stopped, or another tick in flight)
        """
        if self.state is PollerState.STOPPED:
            return False
        if self._tick_in_flight:
            self.skipped_ticks += 1
            logger.debug(f"Skipping tick for {self.job_id}: previous tick in flight")
            return False

        self._tick_in_flight = True
        try:
            report = await self._fetch_status()
            if self.state is PollerState.STOPPED:
                logger.debug(f"Poller for {self.job_id} stopped during status fetch")
                return True
            result = await self.tailer.refresh()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.state is not PollerState.STOPPED:
                await self._handle_error(e)
            return True
        finally:
            self._tick_in_flight = False

        if self.state is PollerState.STOPPED:
            logger.debug(f"Discarding late tick result for {self.job_id}")
            return True

        self.tick_count += 1
        self.consecutive_errors = 0
        self.last_error = None
        self._adapt_interval(result.changed)
        status_changed = self._apply_status(report)

        terminal = None
        heuristic = False
        if not self._terminal_reported:
            if is_terminal(self.status):
                terminal = self.status
            elif result.terminal is not None:
                terminal, heuristic = result.terminal, True
                status_changed = self.status != terminal
                self.status = terminal

        logger.debug(
            f"Tick {self.tick_count} for {self.job_id}: status={self.status}, "
            f"{len(result.new_entries)} new of {len(result.entries)} log entries, "
            f"next in {self.interval}s"
        )
        update = TickUpdate(
            tick=self.tick_count,
            status=self.status,
            status_changed=status_changed,
            new_entries=result.new_entries,
            entries=result.entries,
            terminal=terminal,
            heuristic=heuristic,
            log_reset=result.reset,
        )
        await self._notify(self._on_tick, update)

        if terminal is not None:
            self._terminal_reported = True
            await self._notify(self._on_terminal, self, terminal)
        return True

    async def _fetch_status(self) -> StatusReport | None:
        if self.project_id is None:
            return None
        return await self.api.get_status(self.project_id)

    def _apply_status(self, report: StatusReport | None) -> bool:
        """Take the structured status if it describes this deployment."""
        if report is None or report.current_status is None:
            return False
        if (
            report.latest_deployment_id is not None
            and report.latest_deployment_id != self.job_id
        ):
            return False
        new_status = report.current_status
        if is_terminal(self.status) and not is_terminal(new_status):
            return False
        if new_status == self.status:
            return False
        logger.info(f"Deployment {self.job_id} status {self.status} -> {new_status}")
        self.status = new_status
        return True

    def _adapt_interval(self, changed: bool) -> None:
        base = self.settings.base_interval
        if changed:
            if self.interval != base:
                logger.debug(f"New logs for {self.job_id}, interval back to {base}s")
            self.unchanged_ticks = 0
            self.interval = base
            self.state = PollerState.POLLING
            return

        self.unchanged_ticks += 1
        if self.unchanged_ticks >= self.settings.backoff_after:
            self.interval = min(
                self.interval * self.settings.backoff_factor, self.settings.max_interval
            )
            self.state = PollerState.SLOWED

    async def _handle_error(self, error: Exception) -> None:
        self.consecutive_errors += 1
        self.last_error = error
        fatal = (
            isinstance(error, ApplicationError) and error.is_fatal
        ) or self.consecutive_errors >= self.settings.max_consecutive_errors
        if fatal:
            logger.error(
                f"Giving up on deployment {self.job_id} after "
                f"{self.consecutive_errors} failed ticks: {error}"
            )
            self.stop("error")
        else:
            logger.warning(
                f"Tick for {self.job_id} failed ({self.consecutive_errors} in a row), "
                f"retrying in {self.interval}s: {error}"
            )
        await self._notify(self._on_error, self, error, fatal)

    async def _notify(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            await run_callback(callback, *args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Poller callback for {self.job_id} failed: {e}", exc_info=True)
