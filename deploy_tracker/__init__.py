"""
Deploy Tracker module.

This module follows remote deployments for a dashboard: it deduplicates
project fetches, polls status and logs for each watched deployment with an
adaptive interval, detects completion, and fans updates out to every watcher
of the same deployment through a single poller.
"""

from .cache import ResourceCache
from .config import TrackerSettings
from .poller import PollerState, StatusPoller, TickUpdate
from .reconciler import CompletionReconciler
from .registry import ObserverRegistry, PollSession, WatchHandle
from .tailer import LogTailer, TailResult, detect_terminal
from .tracker import DeploymentTracker

__all__ = [
    "CompletionReconciler",
    "DeploymentTracker",
    "LogTailer",
    "ObserverRegistry",
    "PollSession",
    "PollerState",
    "ResourceCache",
    "StatusPoller",
    "TailResult",
    "TickUpdate",
    "TrackerSettings",
    "WatchHandle",
    "detect_terminal",
]
