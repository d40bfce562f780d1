"""Task list sync engine.

Offline-first, multi-device synchronization of task lists: local edits are
persisted immediately and exchanged with other devices through a remote
snapshot store, with deterministic merging of concurrent changes.
"""

__version__ = "1.0.0"
__author__ = "Anton"
__email__ = ""

from .config import Config
from .models import Document, TaskItem, TaskList

__all__ = [
    "Config",
    "Document",
    "TaskItem",
    "TaskList",
]
