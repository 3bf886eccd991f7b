"""
Single-task reads and status updates.

``get_task_details`` is a pure function over a snapshot. ``set_task_status``
writes through a TaskStore; moving a parent to ``done`` or ``completed`` also
moves its unfinished subtasks, one store call each.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from taskgraph_mcp.core.models import (
    SATISFIED_STATUSES,
    Task,
    TaskId,
    TaskNotFoundError,
    TaskStatus,
    flatten_tasks,
)
from taskgraph_mcp.core.observability import get_audit_logger, get_metrics
from taskgraph_mcp.core.selector import DependencyStatus, get_dependency_status
from taskgraph_mcp.core.stores.base import TaskStore, TaskStoreWriteError

logger = logging.getLogger(__name__)
_metrics = get_metrics()
_audit = get_audit_logger()


def subtasks_of(tasks: Iterable[Task], task_id: TaskId) -> List[Task]:
    """Children of ``task_id``: nested subtasks, or flat records naming it as parent."""
    flat = flatten_tasks(tasks)
    for task in flat:
        if task.id == task_id and task.subtasks:
            return list(task.subtasks)
    return [task for task in flat if task.parent_id == task_id and task.id != task_id]


@dataclass
class TaskDetails:
    """One task with its subtasks and dependency standing."""

    task: Task
    subtasks: List[Task]
    dependencies: DependencyStatus

    def to_dict(self) -> Dict[str, Any]:
        standing = self.dependencies.to_dict()
        return {
            "task": self.task.summary(),
            "subtasks": [sub.summary() for sub in self.subtasks],
            "subtask_count": len(self.subtasks),
            "can_start": standing["can_start"],
            "blocked_by": standing["blocked_by"],
            "satisfied": standing["satisfied"],
            "blocks": standing["blocks"],
        }


def get_task_details(tasks: Iterable[Task], task_id: TaskId) -> TaskDetails:
    """Look up one task or subtask.

    Raises:
        TaskNotFoundError: If ``task_id`` is not in the snapshot
    """
    snapshot = list(tasks)
    standing = get_dependency_status(snapshot, task_id)
    return TaskDetails(
        task=standing.task,
        subtasks=subtasks_of(snapshot, task_id),
        dependencies=standing,
    )


@dataclass
class StatusChange:
    """Outcome of a status update, including cascaded subtask updates."""

    task_id: TaskId
    previous: TaskStatus
    status: TaskStatus
    subtasks_updated: List[TaskId] = field(default_factory=list)
    failures: List[Tuple[TaskId, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id.to_json(),
            "previous_status": self.previous.value,
            "status": self.status.value,
            "subtasks_updated": [sub.to_json() for sub in self.subtasks_updated],
            "failures": [
                {"task_id": sub.to_json(), "reason": reason}
                for sub, reason in self.failures
            ],
        }


def set_task_status(store: TaskStore, task_id: TaskId, status: TaskStatus) -> StatusChange:
    """Move a task to ``status``.

    Completing a parent also completes its subtasks that are not already
    done. A subtask that cannot be updated is recorded in ``failures`` and
    does not undo the parent's change.

    Raises:
        StoreUnavailableError: The store cannot be used
        TaskStoreReadError: The snapshot cannot be read
        TaskNotFoundError: ``task_id`` does not exist
        TaskStoreWriteError: The store refused to update ``task_id`` itself
    """
    store.ensure_available()
    snapshot = store.list_tasks()
    task = next((t for t in flatten_tasks(snapshot) if t.id == task_id), None)
    if task is None:
        raise TaskNotFoundError(task_id)

    updated, reason = store.set_task_status(task_id, status)
    if not updated:
        _metrics.counter("tasks.status_changes", labels={"status": "error"})
        raise TaskStoreWriteError(
            reason or f"Could not set status of {task_id} to {status.value}",
            backend=store.name,
        )
    _audit.status_change(str(task_id), task.status.value, status.value, backend=store.name)

    change = StatusChange(task_id=task_id, previous=task.status, status=status)
    if status in SATISFIED_STATUSES:
        for sub in subtasks_of(snapshot, task_id):
            if sub.id is None or sub.status in SATISFIED_STATUSES:
                continue
            ok, sub_reason = store.set_task_status(sub.id, status)
            if ok:
                change.subtasks_updated.append(sub.id)
                _audit.status_change(
                    str(sub.id), sub.status.value, status.value, backend=store.name
                )
            else:
                logger.warning("Could not update subtask %s: %s", sub.id, sub_reason)
                change.failures.append((sub.id, sub_reason or "unknown error"))

    _metrics.counter("tasks.status_changes", labels={"status": "success"})
    logger.info(
        "Set status of %s: %s -> %s (%d subtask(s) updated)",
        task_id,
        task.status.value,
        status.value,
        len(change.subtasks_updated),
    )
    return change
