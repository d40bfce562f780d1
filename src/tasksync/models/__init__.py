"""Models for the task sync engine."""

from .models import (
    EPOCH,
    SCHEMA_VERSION,
    Document,
    ListColor,
    Point,
    Priority,
    Size,
    TaskItem,
    TaskList,
    TaskStatus,
)

__all__ = [
    "EPOCH",
    "SCHEMA_VERSION",
    "Document",
    "ListColor",
    "Point",
    "Priority",
    "Size",
    "TaskItem",
    "TaskList",
    "TaskStatus",
]
