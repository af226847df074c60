"""Synchronization of the local mirror with the remote proposal service.

Diffs the remote token inventory against the mirror, fetches missing
proposals in page-sized batches and reports vote status transitions.
"""

from .engine import SyncEngine, SyncReport, SyncStatus, batched, diff
from .notifications import LoggingNotificationSink, NotificationSink

__all__ = [
    "LoggingNotificationSink",
    "NotificationSink",
    "SyncEngine",
    "SyncReport",
    "SyncStatus",
    "batched",
    "diff",
]
