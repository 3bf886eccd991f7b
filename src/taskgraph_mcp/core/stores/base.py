"""TaskStore interface shared by the local-file and tracker backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from taskgraph_mcp.core.models import Task, TaskId, TaskStatus, flatten_tasks

EdgeResult = Tuple[bool, Optional[str]]
"""(success, failure reason) returned by store mutations."""


class TaskStoreError(Exception):
    """Base error for task store operations."""

    def __init__(self, message: str, *, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class StoreUnavailableError(TaskStoreError):
    """The store cannot be used at all (missing file, missing credentials)."""


class TaskStoreReadError(TaskStoreError):
    """The task snapshot could not be read."""


class TaskStoreWriteError(TaskStoreError):
    """A mutation could not be persisted."""


class TaskStore(ABC):
    """Read and mutate access to one task collection.

    Implementations own persistence. The dependency engine only ever reads a
    snapshot through ``list_tasks`` and mutates single edges.
    """

    name: str = "base"

    @abstractmethod
    def ensure_available(self) -> None:
        """Raise StoreUnavailableError if the store cannot be used."""

    @abstractmethod
    def list_tasks(self) -> List[Task]:
        """Top-level tasks in creation order, subtasks nested.

        Raises:
            TaskStoreReadError: If the collection cannot be read
        """

    @abstractmethod
    def id_exists(self, task_id: TaskId) -> bool:
        """Whether a task or subtask with this id exists."""

    @abstractmethod
    def remove_dependency_edge(self, task_id: TaskId, dependency_id: TaskId) -> EdgeResult:
        """Remove ``task_id -> dependency_id``.

        Returns:
            (True, None) on success, (False, reason) when the edge could not
            be removed. Implementations report failures through the return
            value rather than raising.
        """

    @abstractmethod
    def add_dependency_edge(self, task_id: TaskId, dependency_id: TaskId) -> EdgeResult:
        """Add ``task_id -> dependency_id``. Same contract as removal."""

    @abstractmethod
    def set_task_status(self, task_id: TaskId, status: TaskStatus) -> EdgeResult:
        """Move one task or subtask to ``status``. Same contract as removal."""

    def snapshot(self) -> List[Task]:
        """Flat snapshot: every task followed by its subtasks."""
        return flatten_tasks(self.list_tasks())

    def close(self) -> None:
        """Release held resources. No-op by default."""

    def __enter__(self) -> "TaskStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
