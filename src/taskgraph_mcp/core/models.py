"""
Task records and task identifiers.

Identifiers are modelled as a small closed family of frozen dataclasses:

- ``NumericId``: top-level task in a local tasks file (``3``)
- ``SubtaskAddress``: subtask in a local tasks file (``"3.2"``)
- ``ExternalKey``: issue key in a remote tracker (``"PROJ-123"``)

All three are hashable and totally ordered, so they can be used as graph
nodes, set members and sort keys without string inspection at call sites.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

_DIGITS_RE = re.compile(r"^\d+$")
_SUBTASK_RE = re.compile(r"^(\d+)\.(\d+)$")
_EXTERNAL_KEY_RE = re.compile(r"^(.*?)(\d+)$")


class InvalidTaskIdError(ValueError):
    """Raised when a raw value cannot be interpreted as a task identifier."""


class TaskNotFoundError(LookupError):
    """Raised when an operation names a task that is not in the collection."""

    def __init__(self, task_id: Any):
        super().__init__(f"Task '{task_id}' not found")
        self.task_id = task_id


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NumericId:
    """Top-level task in a local tasks file."""

    value: int

    def sort_key(self) -> Tuple:
        return (0, self.value, 0, "", 0)

    def to_json(self) -> Union[int, str]:
        return self.value

    def __str__(self) -> str:
        return str(self.value)

    def __lt__(self, other: "TaskId") -> bool:
        return self.sort_key() < other.sort_key()


@dataclass(frozen=True)
class SubtaskAddress:
    """Subtask addressed as ``parent.sub`` in a local tasks file."""

    parent: int
    sub: int

    @property
    def parent_id(self) -> NumericId:
        return NumericId(self.parent)

    def sort_key(self) -> Tuple:
        return (0, self.parent, self.sub, "", 0)

    def to_json(self) -> Union[int, str]:
        return str(self)

    def __str__(self) -> str:
        return f"{self.parent}.{self.sub}"

    def __lt__(self, other: "TaskId") -> bool:
        return self.sort_key() < other.sort_key()


@dataclass(frozen=True)
class ExternalKey:
    """Opaque issue key of a remote tracker, e.g. ``PROJ-123``."""

    key: str

    def sort_key(self) -> Tuple:
        # Natural order: PROJ-9 before PROJ-10
        match = _EXTERNAL_KEY_RE.match(self.key)
        if match:
            return (1, 0, 0, match.group(1), int(match.group(2)))
        return (1, 0, 0, self.key, -1)

    def to_json(self) -> Union[int, str]:
        return self.key

    def __str__(self) -> str:
        return self.key

    def __lt__(self, other: "TaskId") -> bool:
        return self.sort_key() < other.sort_key()


TaskId = Union[NumericId, SubtaskAddress, ExternalKey]
_ID_TYPES = (NumericId, SubtaskAddress, ExternalKey)


def parse_task_id(raw: Any) -> TaskId:
    """Interpret a raw value as a task identifier.

    Args:
        raw: int, string, or an existing identifier

    Returns:
        NumericId, SubtaskAddress or ExternalKey

    Raises:
        InvalidTaskIdError: For None, empty strings, booleans, ids below 1 and
            other types
    """
    if isinstance(raw, _ID_TYPES):
        return raw
    if isinstance(raw, bool):
        raise InvalidTaskIdError(f"Invalid task id: {raw!r}")
    if isinstance(raw, int):
        if raw <= 0:
            raise InvalidTaskIdError(f"Invalid task id: {raw!r} (ids are positive)")
        return NumericId(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            raise InvalidTaskIdError("Invalid task id: empty string")
        if _DIGITS_RE.match(text):
            return parse_task_id(int(text))
        match = _SUBTASK_RE.match(text)
        if match:
            parent, sub = int(match.group(1)), int(match.group(2))
            if parent <= 0 or sub <= 0:
                raise InvalidTaskIdError(f"Invalid task id: {raw!r} (ids are positive)")
            return SubtaskAddress(parent, sub)
        return ExternalKey(text)
    raise InvalidTaskIdError(f"Invalid task id: {raw!r}")


def try_parse_task_id(raw: Any) -> Optional[TaskId]:
    """Like ``parse_task_id`` but returns None for unusable values."""
    try:
        return parse_task_id(raw)
    except InvalidTaskIdError:
        return None


# ---------------------------------------------------------------------------
# Status and priority
# ---------------------------------------------------------------------------


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"
    REVIEW = "review"

    @classmethod
    def lookup(cls, value: Any) -> Optional["TaskStatus"]:
        """Return the status a spelling names, or None if it names none."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        try:
            return cls(text)
        except ValueError:
            return _STATUS_ALIASES.get(text)

    @classmethod
    def normalize(cls, value: Any) -> "TaskStatus":
        """Map a raw status spelling onto the closed enumeration.

        Unknown values fall back to ``pending``.
        """
        if value is None:
            return cls.PENDING
        status = cls.lookup(value)
        if status is not None:
            return status
        logger.warning("Unknown task status %r, treating as pending", value)
        return cls.PENDING


_STATUS_ALIASES: Dict[str, TaskStatus] = {
    "in_progress": TaskStatus.IN_PROGRESS,
    "in progress": TaskStatus.IN_PROGRESS,
    "todo": TaskStatus.PENDING,
    "to do": TaskStatus.PENDING,
    "open": TaskStatus.PENDING,
    "complete": TaskStatus.COMPLETED,
    "closed": TaskStatus.DONE,
    "resolved": TaskStatus.DONE,
    "canceled": TaskStatus.CANCELLED,
    "in review": TaskStatus.REVIEW,
}

SATISFIED_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.COMPLETED})


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @classmethod
    def normalize(cls, value: Any) -> "TaskPriority":
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.MEDIUM
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.MEDIUM


_PRIORITY_RANK = {TaskPriority.HIGH: 3, TaskPriority.MEDIUM: 2, TaskPriority.LOW: 1}


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Task:
    """One task or subtask of a snapshot.

    ``id`` is None when the source record had no usable identifier; such
    tasks are skipped by the graph and anything pointing at them is reported
    as a missing dependency.
    """

    id: Optional[TaskId]
    title: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    dependencies: Tuple[TaskId, ...] = ()
    subtasks: Tuple["Task", ...] = ()
    parent_id: Optional[TaskId] = None

    @property
    def is_satisfied(self) -> bool:
        return self.status in SATISFIED_STATUSES

    @property
    def unique_dependencies(self) -> Tuple[TaskId, ...]:
        """Dependencies with duplicates removed, first occurrence kept."""
        return tuple(dict.fromkeys(self.dependencies))

    @classmethod
    def from_dict(cls, record: Mapping[str, Any]) -> "Task":
        """Build a top-level task from a local tasks-file record.

        Subtask ids become ``SubtaskAddress(parent, sub)``. A subtask
        dependency given as a bare integer refers to a sibling subtask when
        one with that id exists, otherwise to the top-level task.
        """
        task_id = try_parse_task_id(record.get("id"))
        if task_id is None:
            logger.warning("Task record without a usable id: %r", record.get("title"))

        subtasks: List[Task] = []
        raw_subtasks = subtask_records(record.get("subtasks"), task_id)
        if isinstance(task_id, NumericId):
            sibling_ids = {
                sub_id.value
                for sub_id in (try_parse_task_id(s.get("id")) for s in raw_subtasks)
                if isinstance(sub_id, NumericId)
            }
            for raw_sub in raw_subtasks:
                subtasks.append(
                    _subtask_from_dict(raw_sub, task_id, sibling_ids)
                )

        return cls(
            id=task_id,
            title=str(record.get("title") or ""),
            status=TaskStatus.normalize(record.get("status")),
            priority=TaskPriority.normalize(record.get("priority")),
            dependencies=_parse_dependencies(
                dependency_entries(record.get("dependencies"), task_id)
            ),
            subtasks=tuple(subtasks),
        )

    def summary(self) -> Dict[str, Any]:
        """Compact JSON-friendly view used in tool and CLI payloads."""
        data: Dict[str, Any] = {
            "id": self.id.to_json() if self.id is not None else None,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "dependencies": [dep.to_json() for dep in self.dependencies],
        }
        if self.parent_id is not None:
            data["parent_id"] = self.parent_id.to_json()
        return data


def resolve_subtask_dependency(
    raw: Any, parent: NumericId, sibling_ids: Iterable[int]
) -> Optional[TaskId]:
    """Resolve a dependency entry written on a subtask of ``parent``.

    Dotted strings are composite addresses; integers (or digit strings)
    name a sibling subtask if one exists, otherwise a top-level task.
    """
    dep = try_parse_task_id(raw)
    if isinstance(dep, NumericId) and dep.value in set(sibling_ids):
        return SubtaskAddress(parent.value, dep.value)
    return dep


def _subtask_from_dict(
    record: Mapping[str, Any], parent: NumericId, sibling_ids: Iterable[int]
) -> Task:
    sub_id = try_parse_task_id(record.get("id"))
    if isinstance(sub_id, NumericId):
        address: Optional[TaskId] = SubtaskAddress(parent.value, sub_id.value)
    elif isinstance(sub_id, SubtaskAddress):
        address = sub_id
    else:
        logger.warning(
            "Subtask of task %s without a usable id: %r", parent, record.get("title")
        )
        address = None

    deps: List[TaskId] = []
    for raw in dependency_entries(record.get("dependencies"), address):
        dep = resolve_subtask_dependency(raw, parent, sibling_ids)
        if dep is None:
            logger.warning("Ignoring unusable dependency %r on subtask %s", raw, address)
            continue
        deps.append(dep)

    return Task(
        id=address,
        title=str(record.get("title") or ""),
        status=TaskStatus.normalize(record.get("status")),
        priority=TaskPriority.normalize(record.get("priority")),
        dependencies=tuple(deps),
        parent_id=parent,
    )


def subtask_records(raw: Any, parent: Optional[TaskId]) -> List[Mapping[str, Any]]:
    """The usable subtask records of a task; anything but a list of objects is dropped."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring non-list subtasks on task %s: %r", parent, raw)
        return []
    records = [item for item in raw if isinstance(item, Mapping)]
    if len(records) != len(raw):
        logger.warning(
            "Ignoring %d malformed subtask record(s) on task %s",
            len(raw) - len(records),
            parent,
        )
    return records


def dependency_entries(raw: Any, owner: Optional[TaskId]) -> List[Any]:
    """The raw dependency list of a record; a non-list value counts as empty."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Ignoring non-list dependencies on task %s: %r", owner, raw)
        return []
    return raw


def _parse_dependencies(raw: Iterable[Any]) -> Tuple[TaskId, ...]:
    deps: List[TaskId] = []
    for item in raw:
        dep = try_parse_task_id(item)
        if dep is None:
            logger.warning("Ignoring unusable dependency id %r", item)
            continue
        deps.append(dep)
    return tuple(deps)


def flatten_tasks(tasks: Iterable[Task]) -> List[Task]:
    """Return every task and subtask, each parent followed by its subtasks.

    Already-flat input is returned unchanged in order.
    """
    flat: List[Task] = []
    seen = set()
    for task in tasks:
        for item in (task, *task.subtasks):
            if id(item) in seen:
                continue
            seen.add(id(item))
            flat.append(item)
    return flat


def find_task(tasks: Iterable[Task], task_id: TaskId) -> Optional[Task]:
    """Find a task or subtask by identifier in a flat or nested sequence."""
    for task in flatten_tasks(tasks):
        if task.id == task_id:
            return task
    return None


def format_ids(ids: Iterable[TaskId]) -> str:
    return ", ".join(str(i) for i in ids)
