"""
Incremental log fetching for one deployment.

The logs endpoint always returns the full log set, there is no cursor or
offset protocol. The tailer remembers how many entries it has already seen and
hands back only the ones past that point, in the same way a file tail
remembers its byte offset.

Terminal detection here is a heuristic. The structured status from the status
endpoint is the source of truth; matching marker phrases in log text is only
a fallback for when that status lags behind or is unavailable.
"""

import logging
from dataclasses import dataclass, field

from deploy_client.client import AsyncDeployClient
from deploy_common.models import FAILURE, SUCCESS, LogEntry

logger = logging.getLogger(__name__)

SUCCESS_MARKERS = ("done", "completed successfully")
FAILURE_MARKERS = ("build failed", "deployment failed", "deploy failed")


def detect_terminal(entries: list[LogEntry]) -> tuple[str, str] | None:
    """
    Scan log entries in order for a terminal marker.

    A bare "error" in a message is deliberately not a failure marker: builds
    routinely log recoverable errors.

    Returns:
        (status, marker) for the first matching entry, or None
    """
    for entry in entries:
        text = entry.message.lower()
        for marker in FAILURE_MARKERS:
            if marker in text:
                return FAILURE, marker
        for marker in SUCCESS_MARKERS:
            if marker in text:
                return SUCCESS, marker
    return None


@dataclass
class TailResult:
    """Outcome of one refresh."""

    new_entries: list[LogEntry]
    entries: list[LogEntry]
    terminal: str | None = None  # set only on the refresh that first detects it
    marker: str | None = None
    reset: bool = False  # server returned fewer entries than previously seen

    @property
    def changed(self) -> bool:
        return bool(self.new_entries) or self.reset


@dataclass
class LogTailer:
    """
    Tail the logs of a single deployment.

    Attributes:
        deployment_id: Deployment whose logs are fetched
        entries: Full log set as of the last refresh, for display
        seen_count: Number of entries already handed out
        terminal: Latched terminal status detected from log text
    """

    api: AsyncDeployClient
    deployment_id: str
    entries: list[LogEntry] = field(default_factory=list)
    seen_count: int = 0
    terminal: str | None = None
    marker: str | None = None

    async def refresh(self) -> TailResult:
        """Fetch the current log set and return what is new since last time."""
        logs = await self.api.get_logs(self.deployment_id)
        return self.ingest(logs)

    def ingest(self, logs: list[LogEntry]) -> TailResult:
        reset = len(logs) < self.seen_count
        if reset:
            logger.warning(
                f"Log set for deployment {self.deployment_id} shrank from "
                f"{self.seen_count} to {len(logs)} entries, starting over"
            )
            self.seen_count = 0

        new_entries = list(logs[self.seen_count :])
        self.entries = list(logs)
        self.seen_count = len(logs)

        result = TailResult(new_entries=new_entries, entries=self.entries, reset=reset)
        if self.terminal is None:
            detected = detect_terminal(new_entries)
            if detected is not None:
                self.terminal, self.marker = detected
                result.terminal, result.marker = detected
                logger.warning(
                    f"Deployment {self.deployment_id} looks {self.terminal} from "
                    f"log text (matched {self.marker!r}); no structured status yet"
                )
        return result
