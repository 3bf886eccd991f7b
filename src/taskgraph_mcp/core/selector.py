"""
Next-task selection and per-task dependency status.

A task is eligible when its status is ``pending`` and every dependency
resolves to a task whose status is ``done`` or ``completed``. Among eligible
tasks the highest priority wins; ties go to the lowest id, then to the
earlier position in the snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from taskgraph_mcp.core.models import (
    SATISFIED_STATUSES,
    Task,
    TaskId,
    TaskNotFoundError,
    TaskStatus,
    flatten_tasks,
)

logger = logging.getLogger(__name__)


def _index(tasks: Iterable[Task]) -> Tuple[List[Task], Dict[TaskId, Task]]:
    flat = [task for task in flatten_tasks(tasks) if task.id is not None]
    by_id: Dict[TaskId, Task] = {}
    for task in flat:
        by_id.setdefault(task.id, task)
    return flat, by_id


def is_eligible(task: Task, by_id: Dict[TaskId, Task]) -> bool:
    """Pending, and every dependency is known and satisfied."""
    if task.status is not TaskStatus.PENDING:
        return False
    for dep in task.dependencies:
        target = by_id.get(dep)
        if target is None or target.status not in SATISFIED_STATUSES:
            return False
    return True


def eligible_tasks(tasks: Iterable[Task]) -> List[Task]:
    """All eligible tasks, best candidate first."""
    flat, by_id = _index(tasks)
    ranked = [
        (position, task)
        for position, task in enumerate(flat)
        if is_eligible(task, by_id)
    ]
    ranked.sort(key=lambda item: (-item[1].priority.rank, item[1].id.sort_key(), item[0]))
    return [task for _, task in ranked]


def select_next_task(tasks: Iterable[Task]) -> Optional[Task]:
    """Return the single best eligible task, or None if nothing can start."""
    candidates = eligible_tasks(tasks)
    if not candidates:
        logger.debug("No eligible task found")
        return None
    return candidates[0]


@dataclass
class DependencyStatus:
    """Where one task stands with respect to its dependencies."""

    task: Task
    blocked_by: List[Dict[str, Any]] = field(default_factory=list)
    satisfied: List[Dict[str, Any]] = field(default_factory=list)
    blocks: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def can_start(self) -> bool:
        return self.task.status is TaskStatus.PENDING and not self.blocked_by

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task.id.to_json() if self.task.id is not None else None,
            "status": self.task.status.value,
            "can_start": self.can_start,
            "blocked_by": self.blocked_by,
            "satisfied": self.satisfied,
            "blocks": self.blocks,
        }


def get_dependency_status(tasks: Iterable[Task], task_id: TaskId) -> DependencyStatus:
    """Classify a task's dependencies and list the tasks waiting on it.

    Unknown dependency ids are reported as blocking with status ``missing``.

    Raises:
        TaskNotFoundError: If ``task_id`` is not in the snapshot
    """
    flat, by_id = _index(tasks)
    task = by_id.get(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)

    status = DependencyStatus(task=task)
    for dep in task.unique_dependencies:
        target = by_id.get(dep)
        if target is None:
            status.blocked_by.append({"id": dep.to_json(), "status": "missing"})
        elif target.status in SATISFIED_STATUSES:
            status.satisfied.append(
                {"id": dep.to_json(), "title": target.title, "status": target.status.value}
            )
        else:
            status.blocked_by.append(
                {"id": dep.to_json(), "title": target.title, "status": target.status.value}
            )

    for other in flat:
        if other.id != task_id and task_id in other.dependencies:
            status.blocks.append(
                {"id": other.id.to_json(), "title": other.title, "status": other.status.value}
            )
    return status
