"""Synchronization module.

Handles tombstones, merging, document updates and orchestration.
"""

from .merge_engine import (
    MergeStats,
    merge_documents,
    merge_documents_with_stats,
    merge_items,
    merge_lists,
    merge_task_order,
)
from .orchestrator import SyncOrchestrator
from .scheduler import (
    ImmediateExecutor,
    ManualScheduler,
    Scheduler,
    ThreadedScheduler,
    TimerHandle,
)
from .state import AuthState, EventKind, Identity, SyncEvent, SyncState, SyncStatus
from .tombstones import TombstoneStore

__all__ = [
    # Merge engine
    "MergeStats",
    "merge_documents",
    "merge_documents_with_stats",
    "merge_items",
    "merge_lists",
    "merge_task_order",
    # Orchestration
    "SyncOrchestrator",
    # Scheduling
    "ImmediateExecutor",
    "ManualScheduler",
    "Scheduler",
    "ThreadedScheduler",
    "TimerHandle",
    # State
    "AuthState",
    "EventKind",
    "Identity",
    "SyncEvent",
    "SyncState",
    "SyncStatus",
    # Tombstones
    "TombstoneStore",
]
