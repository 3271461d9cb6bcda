"""
Deploy Common module.

This module contains the domain models shared by the deploy API client and
the progress tracker.

The common module has no dependencies on other deploy_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .models import (
    FAILURE,
    QUEUED,
    RUNNING,
    SUCCESS,
    TERMINAL_STATUSES,
    Job,
    LogEntry,
    Project,
    StatusReport,
    is_terminal,
    normalize_status,
)

__all__ = [
    "FAILURE",
    "QUEUED",
    "RUNNING",
    "SUCCESS",
    "TERMINAL_STATUSES",
    "Job",
    "LogEntry",
    "Project",
    "StatusReport",
    "is_terminal",
    "normalize_status",
]
