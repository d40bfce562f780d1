"""Data models for the task sync engine.

All models are immutable. Changes are made by building a validated copy with
``with_changes`` and handing the new value back to the orchestrator, which owns
the single mutable reference to the current ``Document``.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SCHEMA_VERSION = 2


def utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    """Generate a new entity id."""
    return str(uuid.uuid4()).upper()


# Snapshots written by newer versions may carry values this version doesn't
# know. Such a field falls back to its default instead of failing the decode.

_FLAG_WORDS = {
    "true": True,
    "yes": True,
    "1": True,
    "false": False,
    "no": False,
    "0": False,
}


def known_or_default(choices: Any, value: Any, default: Any) -> Any:
    """Return ``value`` as a member of ``choices``, or ``default``."""
    try:
        return choices(value)
    except (TypeError, ValueError):
        return default


def flag_or_default(value: Any, default: bool) -> bool:
    """Read a boolean leniently, falling back to ``default``."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        return _FLAG_WORDS.get(value.strip().lower(), default)
    return default


def positive_or_none(value: Any) -> Optional[int]:
    """Whole positive number of minutes, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        minutes = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return minutes if minutes > 0 else None


def _field_default(model: Any, info: ValidationInfo) -> Any:
    field = model.model_fields[info.field_name]
    return field.get_default(call_default_factory=True)


def _geometry_or_default(model: Any, value: Any, info: ValidationInfo) -> Any:
    field = model.model_fields[info.field_name]
    try:
        return field.annotation.model_validate(value)
    except ValidationError:
        return _field_default(model, info)


class SyncModel(BaseModel):
    """Base for all synchronized models: frozen, camelCase on the wire."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    def with_changes(self, **changes: Any) -> Any:
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def to_wire(self) -> Dict[str, Any]:
        """Dump to the camelCase JSON-compatible form used on disk and remote."""
        return self.model_dump(mode="json", by_alias=True)


class ListColor(str, Enum):
    """Color tag palette for lists."""

    BLUE = "blue"
    PURPLE = "purple"
    PINK = "pink"
    ORANGE = "orange"
    GREEN = "green"
    YELLOW = "yellow"
    GRAY = "gray"


class Priority(str, Enum):
    """Task priority, ordered none < low < medium < high."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def numeric_value(self) -> int:
        """Rank used for ordering."""
        return _PRIORITY_RANK[self]

    @property
    def title(self) -> str:
        """Display title."""
        return self.value.capitalize()


_PRIORITY_RANK = {
    Priority.NONE: 0,
    Priority.LOW: 1,
    Priority.MEDIUM: 2,
    Priority.HIGH: 3,
}


class TaskStatus(str, Enum):
    """Workflow status of a task (unordered)."""

    TODO = "todo"
    IN_PROGRESS = "in-progress"
    BLOCKED = "blocked"
    DONE = "done"


class Point(SyncModel):
    """Window position."""

    x: float = 0.0
    y: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def accept_pair(cls, v: Any) -> Any:
        """Accept the legacy ``[x, y]`` array encoding."""
        if isinstance(v, (list, tuple)) and len(v) == 2:
            return {"x": v[0], "y": v[1]}
        return v


class Size(SyncModel):
    """Window size."""

    width: float = 300.0
    height: float = 400.0

    @model_validator(mode="before")
    @classmethod
    def accept_pair(cls, v: Any) -> Any:
        """Accept the legacy ``[width, height]`` array encoding."""
        if isinstance(v, (list, tuple)) and len(v) == 2:
            return {"width": v[0], "height": v[1]}
        return v


def _utc_map(v: Dict[str, datetime]) -> Dict[str, datetime]:
    return {key: utc(when) for key, when in v.items()}


class TaskItem(SyncModel):
    """A single task inside a list."""

    id: str = Field(default_factory=new_id)
    content: str = ""
    is_completed: bool = False
    is_bold: bool = False
    is_italic: bool = False
    is_strikethrough: bool = False
    priority: Priority = Priority.NONE
    status: TaskStatus = TaskStatus.TODO
    estimated_minutes: Optional[int] = Field(default=None, gt=0)
    reminder_date: Optional[datetime] = None
    last_modified: datetime = EPOCH

    @field_validator("priority", "status", mode="before")
    @classmethod
    def fallback_unknown_choice(cls, v: Any, info: ValidationInfo) -> Any:
        """Map unknown enum values to the field default."""
        return known_or_default(
            cls.model_fields[info.field_name].annotation, v, _field_default(cls, info)
        )

    @field_validator(
        "is_completed", "is_bold", "is_italic", "is_strikethrough", mode="before"
    )
    @classmethod
    def fallback_bad_flag(cls, v: Any, info: ValidationInfo) -> bool:
        """Map unreadable flags to the field default."""
        return flag_or_default(v, _field_default(cls, info))

    @field_validator("estimated_minutes", mode="before")
    @classmethod
    def drop_bad_estimate(cls, v: Any) -> Optional[int]:
        """Discard estimates that aren't a positive number of minutes."""
        return positive_or_none(v)

    @field_validator("last_modified", "reminder_date")
    @classmethod
    def validate_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Normalize timestamps to UTC."""
        if v is None:
            return v
        return utc(v)


class TaskList(SyncModel):
    """An ordered list of tasks plus its window metadata."""

    id: str = Field(default_factory=new_id)
    title: str = "New List"
    items: Tuple[TaskItem, ...] = ()
    position: Point = Field(default_factory=Point)
    size: Size = Field(default_factory=Size)
    color: ListColor = ListColor.BLUE
    sort_descending: bool = True
    is_visible: bool = True
    last_modified: datetime = EPOCH
    deleted_item_ids: Dict[str, datetime] = Field(
        default_factory=dict, alias="deletedItemIDs"
    )

    @field_validator("color", mode="before")
    @classmethod
    def fallback_unknown_color(cls, v: Any) -> Any:
        """Map unknown colors to blue."""
        return known_or_default(ListColor, v, ListColor.BLUE)

    @field_validator("sort_descending", "is_visible", mode="before")
    @classmethod
    def fallback_bad_flag(cls, v: Any) -> bool:
        """Map unreadable flags to True, the default for both."""
        return flag_or_default(v, True)

    @field_validator("position", "size", mode="before")
    @classmethod
    def fallback_bad_geometry(cls, v: Any, info: ValidationInfo) -> Any:
        return _geometry_or_default(cls, v, info)

    @field_validator("last_modified")
    @classmethod
    def validate_last_modified(cls, v: datetime) -> datetime:
        """Normalize timestamp to UTC."""
        return utc(v)

    @field_validator("deleted_item_ids")
    @classmethod
    def validate_deleted_item_ids(cls, v: Dict[str, datetime]) -> Dict[str, datetime]:
        """Normalize tombstone timestamps to UTC."""
        return _utc_map(v)

    @property
    def item_count(self) -> int:
        """Number of live items."""
        return len(self.items)

    def find_item(self, item_id: str) -> Optional[TaskItem]:
        """Get an item by id."""
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def index_of(self, item_id: str) -> int:
        """Position of an item, or -1."""
        for index, item in enumerate(self.items):
            if item.id == item_id:
                return index
        return -1

    def metadata(self) -> Dict[str, Any]:
        """List-level fields without items and tombstones."""
        return self.model_dump(exclude={"items", "deleted_item_ids"})

    def sorted_items(self) -> List[TaskItem]:
        """Items in "sort" order.

        Incomplete before completed, then priority (high first when
        ``sort_descending``), then content alphabetically.
        """
        sign = -1 if self.sort_descending else 1

        def key(item: TaskItem) -> Tuple[bool, int, str]:
            return (
                item.is_completed,
                sign * item.priority.numeric_value,
                item.content,
            )

        return sorted(self.items, key=key)


class Document(SyncModel):
    """Root synchronized aggregate."""

    schema_version: int = SCHEMA_VERSION
    lists: Tuple[TaskList, ...] = ()
    merged_task_order: Tuple[str, ...] = ()
    merged_list_position: Point = Field(default_factory=Point)
    merged_list_size: Size = Field(
        default_factory=lambda: Size(width=350.0, height=500.0)
    )
    deleted_list_ids: Dict[str, datetime] = Field(
        default_factory=dict, alias="deletedListIDs"
    )

    @field_validator("merged_list_position", "merged_list_size", mode="before")
    @classmethod
    def fallback_bad_geometry(cls, v: Any, info: ValidationInfo) -> Any:
        return _geometry_or_default(cls, v, info)

    @field_validator("deleted_list_ids")
    @classmethod
    def validate_deleted_list_ids(cls, v: Dict[str, datetime]) -> Dict[str, datetime]:
        """Normalize tombstone timestamps to UTC."""
        return _utc_map(v)

    @property
    def is_empty(self) -> bool:
        """True when there are no lists."""
        return not self.lists

    def find_list(self, list_id: str) -> Optional[TaskList]:
        """Get a list by id."""
        for task_list in self.lists:
            if task_list.id == list_id:
                return task_list
        return None

    def find_item(self, item_id: str) -> Optional[Tuple[TaskList, TaskItem]]:
        """Locate an item and its owning list."""
        for task_list in self.lists:
            item = task_list.find_item(item_id)
            if item is not None:
                return task_list, item
        return None

    def iter_items(self) -> Iterator[TaskItem]:
        """Iterate every live item across lists."""
        for task_list in self.lists:
            yield from task_list.items

    def all_items(self) -> List[TaskItem]:
        """All live items across lists, in list order."""
        return list(self.iter_items())

    def live_item_ids(self) -> Set[str]:
        """Ids of every live item."""
        return {item.id for item in self.iter_items()}
