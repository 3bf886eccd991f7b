"""Adjacency view over a task snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from taskgraph_mcp.core.models import Task, TaskId, flatten_tasks

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    """Task id -> dependency ids, in snapshot insertion order.

    Attributes:
        order: Task ids in insertion order (tie-break order elsewhere)
        adjacency: Task id -> de-duplicated dependency ids, order preserved
        known_ids: All usable task ids, for O(1) existence checks
        tasks: Task id -> task record
        malformed: Number of records skipped because they had no usable id
    """

    order: Tuple[TaskId, ...]
    adjacency: Dict[TaskId, Tuple[TaskId, ...]]
    known_ids: FrozenSet[TaskId]
    tasks: Dict[TaskId, Task]
    malformed: int = 0
    _dependents: Dict[TaskId, Tuple[TaskId, ...]] = field(
        default_factory=dict, repr=False, compare=False
    )

    @classmethod
    def from_tasks(cls, tasks: Iterable[Task]) -> "DependencyGraph":
        """Build the graph from a snapshot; nested subtasks are included."""
        order: List[TaskId] = []
        adjacency: Dict[TaskId, Tuple[TaskId, ...]] = {}
        by_id: Dict[TaskId, Task] = {}
        malformed = 0

        for task in flatten_tasks(tasks):
            if task.id is None:
                malformed += 1
                logger.warning(
                    "Skipping task without a usable id (title=%r)", task.title
                )
                continue
            if task.id in by_id:
                logger.warning("Duplicate task id %s, keeping the first record", task.id)
                continue
            order.append(task.id)
            by_id[task.id] = task
            adjacency[task.id] = task.unique_dependencies

        dependents: Dict[TaskId, List[TaskId]] = {}
        for task_id in order:
            for dep in adjacency[task_id]:
                dependents.setdefault(dep, []).append(task_id)

        return cls(
            order=tuple(order),
            adjacency=adjacency,
            known_ids=frozenset(order),
            tasks=by_id,
            malformed=malformed,
            _dependents={k: tuple(v) for k, v in dependents.items()},
        )

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.known_ids

    def __len__(self) -> int:
        return len(self.order)

    def get(self, task_id: TaskId) -> Optional[Task]:
        return self.tasks.get(task_id)

    def dependencies_of(self, task_id: TaskId) -> Tuple[TaskId, ...]:
        return self.adjacency.get(task_id, ())

    def dependents_of(self, task_id: TaskId) -> Tuple[TaskId, ...]:
        """Tasks that list ``task_id`` as a dependency, in insertion order."""
        return self._dependents.get(task_id, ())

    def position(self, task_id: TaskId) -> int:
        return self.order.index(task_id)

    def find_path(self, start: TaskId, goal: TaskId) -> Optional[List[TaskId]]:
        """Dependency path from ``start`` to ``goal`` following known edges.

        Returns the id sequence including both ends, or None if ``goal`` is
        not reachable.
        """
        if start not in self.known_ids:
            return None
        parents: Dict[TaskId, Optional[TaskId]] = {start: None}
        stack = [start]
        while stack:
            node = stack.pop()
            if node == goal:
                path = [node]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            for dep in self.adjacency.get(node, ()):
                if dep in self.known_ids and dep not in parents:
                    parents[dep] = node
                    stack.append(dep)
        return None
