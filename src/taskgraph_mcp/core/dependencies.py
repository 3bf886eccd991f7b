"""
Dependency validation and repair.

Finds three kinds of structural defects in a task snapshot and removes the
offending edges through a TaskStore:

- self: a task lists itself as a dependency
- missing: a task depends on an id that is not in the collection
- circular: an edge that closes a dependency cycle

Repair is a best-effort pass. Each removal is delegated to the store one at a
time; a failed removal is recorded as unfixable and the pass continues. There
is no rollback of removals that already succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from taskgraph_mcp.core.graph import DependencyGraph
from taskgraph_mcp.core.models import Task, TaskId, TaskNotFoundError, flatten_tasks
from taskgraph_mcp.core.observability import get_audit_logger, get_metrics
from taskgraph_mcp.core.stores.base import (
    TaskStore,
    TaskStoreError,
    TaskStoreWriteError,
)

logger = logging.getLogger(__name__)
_metrics = get_metrics()
_audit = get_audit_logger()


# ---------------------------------------------------------------------------
# Violations
# ---------------------------------------------------------------------------


class ViolationType(str, Enum):
    SELF = "self"
    MISSING = "missing"
    CIRCULAR = "circular"


# Removal order used by the repair pass
REPAIR_ORDER: Tuple[ViolationType, ...] = (
    ViolationType.SELF,
    ViolationType.MISSING,
    ViolationType.CIRCULAR,
)


@dataclass(frozen=True)
class Violation:
    """One structurally invalid dependency edge ``task_id -> dependency_id``."""

    type: ViolationType
    task_id: TaskId
    dependency_id: TaskId
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "taskId": self.task_id.to_json(),
            "dependencyId": self.dependency_id.to_json(),
            "message": self.message,
        }


CycleKey = Tuple[TaskId, TaskId]


def cycle_key(a: TaskId, b: TaskId) -> CycleKey:
    """Canonical unordered pair for an edge, so (a, b) and (b, a) collide."""
    return (a, b) if a.sort_key() <= b.sort_key() else (b, a)


class _Visit(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


def validate_dependencies(tasks: Iterable[Task]) -> List[Violation]:
    """Classify every invalid dependency edge in a snapshot.

    Self and missing violations come first, in task order then dependency
    order; circular violations follow in detection order. Duplicate
    dependency entries on a task are considered once.

    Args:
        tasks: Snapshot of tasks (nested subtasks are included)

    Returns:
        List of violations; empty when the graph is valid
    """
    graph = tasks if isinstance(tasks, DependencyGraph) else DependencyGraph.from_tasks(tasks)

    violations: List[Violation] = []
    for task_id in graph.order:
        for dep in graph.dependencies_of(task_id):
            if dep == task_id:
                violations.append(
                    Violation(
                        ViolationType.SELF,
                        task_id,
                        dep,
                        f"Task {task_id} depends on itself",
                    )
                )
            elif dep not in graph.known_ids:
                violations.append(
                    Violation(
                        ViolationType.MISSING,
                        task_id,
                        dep,
                        f"Task {task_id} depends on non-existent task {dep}",
                    )
                )

    violations.extend(_find_cycle_edges(graph))

    if violations:
        logger.info(
            "Dependency validation found %d issue(s) across %d task(s)",
            len(violations),
            len(graph),
        )
    return violations


def _find_cycle_edges(graph: DependencyGraph) -> List[Violation]:
    """Depth-first search reporting one back edge per cycle.

    Visit state is shared across start nodes, so each edge is examined once
    and a cycle is reported once no matter where traversal starts. Removing
    every reported edge leaves the graph acyclic.
    """
    state: Dict[TaskId, _Visit] = {}
    seen: Set[CycleKey] = set()
    found: List[Violation] = []

    def edges(node: TaskId):
        return iter(
            [
                dep
                for dep in graph.dependencies_of(node)
                if dep != node and dep in graph.known_ids
            ]
        )

    for start in graph.order:
        if state.get(start, _Visit.UNVISITED) is not _Visit.UNVISITED:
            continue

        state[start] = _Visit.IN_PROGRESS
        stack = [(start, edges(start))]
        while stack:
            node, pending = stack[-1]
            descended = False
            for dep in pending:
                dep_state = state.get(dep, _Visit.UNVISITED)
                if dep_state is _Visit.IN_PROGRESS:
                    key = cycle_key(node, dep)
                    if key not in seen:
                        seen.add(key)
                        found.append(
                            Violation(
                                ViolationType.CIRCULAR,
                                node,
                                dep,
                                f"Task {node} is part of a circular dependency "
                                f"chain involving {dep}",
                            )
                        )
                elif dep_state is _Visit.UNVISITED:
                    state[dep] = _Visit.IN_PROGRESS
                    stack.append((dep, edges(dep)))
                    descended = True
                    break
            if not descended:
                state[node] = _Visit.DONE
                stack.pop()

    return found


# ---------------------------------------------------------------------------
# Repair
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RepairFailure:
    violation: Violation
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.violation.to_dict()
        data["reason"] = self.reason
        return data


@dataclass
class RepairResult:
    """Outcome of one repair pass."""

    self_removed: int = 0
    missing_removed: int = 0
    circular_removed: int = 0
    unfixable: int = 0
    original_issues: int = 0
    failures: List[RepairFailure] = field(default_factory=list)

    @property
    def total_removed(self) -> int:
        return self.self_removed + self.missing_removed + self.circular_removed

    def record_removed(self, violation_type: ViolationType) -> None:
        if violation_type is ViolationType.SELF:
            self.self_removed += 1
        elif violation_type is ViolationType.MISSING:
            self.missing_removed += 1
        else:
            self.circular_removed += 1

    def summary_message(self) -> str:
        if self.original_issues == 0:
            return "All dependencies are already valid, nothing to fix"
        message = (
            f"Fixed {self.total_removed} dependencies "
            f"({self.self_removed} self-dependencies, "
            f"{self.missing_removed} missing dependencies, "
            f"{self.circular_removed} circular dependencies)."
        )
        if self.unfixable:
            message += f" Unable to fix {self.unfixable} dependencies."
        return message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.summary_message(),
            "stats": {
                "selfDepsRemoved": self.self_removed,
                "missingDepsRemoved": self.missing_removed,
                "circularDepsRemoved": self.circular_removed,
                "totalRemoved": self.total_removed,
                "unfixable": self.unfixable,
                "originalIssues": self.original_issues,
            },
            "failures": [failure.to_dict() for failure in self.failures],
        }


def order_for_repair(violations: Sequence[Violation]) -> List[Violation]:
    """Self first, then missing, then circular; stable within each type.

    Circular violations are de-duplicated by unordered pair so a cycle
    reported twice by a caller still costs one removal.
    """
    ordered: List[Violation] = []
    seen_cycles: Set[CycleKey] = set()
    for violation_type in REPAIR_ORDER:
        for violation in violations:
            if violation.type is not violation_type:
                continue
            if violation_type is ViolationType.CIRCULAR:
                key = cycle_key(violation.task_id, violation.dependency_id)
                if key in seen_cycles:
                    continue
                seen_cycles.add(key)
            ordered.append(violation)
    return ordered


def fix_dependencies(
    store: TaskStore,
    violations: Optional[Sequence[Violation]] = None,
) -> RepairResult:
    """Remove every invalid dependency edge the store will let us remove.

    Args:
        store: Backing store; all mutations go through it
        violations: Pre-computed violations; validated from a fresh
            snapshot when omitted

    Returns:
        RepairResult with per-type counts and recorded failures

    Raises:
        StoreUnavailableError: Before any work if the store is unusable
        TaskStoreReadError: If the snapshot cannot be read
    """
    store.ensure_available()

    if violations is None:
        violations = validate_dependencies(store.list_tasks())

    result = RepairResult(original_issues=len(violations))
    if not violations:
        logger.info("No dependency issues to fix")
        return result

    for violation in order_for_repair(violations):
        try:
            removed, reason = store.remove_dependency_edge(
                violation.task_id, violation.dependency_id
            )
        except TaskStoreError as exc:
            removed, reason = False, str(exc)

        if removed:
            result.record_removed(violation.type)
            _audit.dependency_change(
                str(violation.task_id),
                str(violation.dependency_id),
                added=False,
                backend=store.name,
                violation=violation.type.value,
            )
            logger.debug(
                "Removed %s dependency %s -> %s",
                violation.type.value,
                violation.task_id,
                violation.dependency_id,
            )
        else:
            reason = reason or "removal failed"
            result.unfixable += 1
            result.failures.append(RepairFailure(violation, reason))
            logger.warning(
                "Could not remove %s dependency %s -> %s: %s",
                violation.type.value,
                violation.task_id,
                violation.dependency_id,
                reason,
            )

    _metrics.counter(
        "dependencies.removed",
        value=result.total_removed,
        labels={"backend": store.name},
    )
    if result.unfixable:
        _metrics.counter(
            "dependencies.unfixable",
            value=result.unfixable,
            labels={"backend": store.name},
        )
    logger.info(result.summary_message())
    return result


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


def build_validation_report(
    tasks: Iterable[Task], violations: Optional[Sequence[Violation]] = None
) -> Dict[str, Any]:
    """Envelope consumed by the tool and CLI layers."""
    flat = flatten_tasks(tasks)
    if violations is None:
        violations = validate_dependencies(flat)
    return {
        "valid": not violations,
        "issues": [violation.to_dict() for violation in violations],
        "stats": {
            "totalTasks": len(flat),
            "withDependencies": sum(1 for task in flat if task.dependencies),
            "invalidDependencies": len(violations),
        },
    }


# ---------------------------------------------------------------------------
# Manual edits
# ---------------------------------------------------------------------------


class DependencyEditError(ValueError):
    """Base error for rejected manual dependency edits."""

    def __init__(self, message: str, task_id: TaskId, dependency_id: TaskId):
        super().__init__(message)
        self.task_id = task_id
        self.dependency_id = dependency_id


class SelfDependencyError(DependencyEditError):
    pass


class DuplicateDependencyError(DependencyEditError):
    pass


class DependencyNotFoundError(DependencyEditError):
    pass


class CircularDependencyError(DependencyEditError):
    def __init__(self, task_id: TaskId, dependency_id: TaskId, cycle: List[TaskId]):
        super().__init__(
            f"Adding {task_id} -> {dependency_id} would create a cycle: "
            + " -> ".join(str(i) for i in cycle),
            task_id,
            dependency_id,
        )
        self.cycle = cycle


@dataclass(frozen=True)
class DependencyEdit:
    task_id: TaskId
    dependency_id: TaskId
    added: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id.to_json(),
            "dependency_id": self.dependency_id.to_json(),
            "action": "added" if self.added else "removed",
        }


def add_dependency(store: TaskStore, task_id: TaskId, dependency_id: TaskId) -> DependencyEdit:
    """Add ``task_id -> dependency_id`` unless it would break the graph.

    Raises:
        SelfDependencyError: task_id equals dependency_id
        TaskNotFoundError: either task does not exist
        DuplicateDependencyError: the edge is already present
        CircularDependencyError: dependency_id already (transitively)
            depends on task_id
        TaskStoreWriteError: the store refused the mutation
    """
    store.ensure_available()
    if task_id == dependency_id:
        raise SelfDependencyError(
            f"Task {task_id} cannot depend on itself", task_id, dependency_id
        )

    graph = DependencyGraph.from_tasks(store.list_tasks())
    if task_id not in graph:
        raise TaskNotFoundError(task_id)
    if dependency_id not in graph and not store.id_exists(dependency_id):
        raise TaskNotFoundError(dependency_id)
    if dependency_id in graph.dependencies_of(task_id):
        raise DuplicateDependencyError(
            f"Task {task_id} already depends on {dependency_id}", task_id, dependency_id
        )

    path = graph.find_path(dependency_id, task_id)
    if path is not None:
        raise CircularDependencyError(task_id, dependency_id, path + [dependency_id])

    added, reason = store.add_dependency_edge(task_id, dependency_id)
    if not added:
        raise TaskStoreWriteError(
            reason or f"Could not add dependency {task_id} -> {dependency_id}",
            backend=store.name,
        )

    _audit.dependency_change(
        str(task_id), str(dependency_id), added=True, backend=store.name
    )
    logger.info("Added dependency %s -> %s", task_id, dependency_id)
    return DependencyEdit(task_id, dependency_id, added=True)


def remove_dependency(
    store: TaskStore, task_id: TaskId, dependency_id: TaskId
) -> DependencyEdit:
    """Remove an existing ``task_id -> dependency_id`` edge.

    Raises:
        TaskNotFoundError: task_id does not exist
        DependencyNotFoundError: task_id does not list dependency_id
        TaskStoreWriteError: the store refused the mutation
    """
    store.ensure_available()
    graph = DependencyGraph.from_tasks(store.list_tasks())
    if task_id not in graph:
        raise TaskNotFoundError(task_id)
    if dependency_id not in graph.dependencies_of(task_id):
        raise DependencyNotFoundError(
            f"Task {task_id} does not depend on {dependency_id}", task_id, dependency_id
        )

    removed, reason = store.remove_dependency_edge(task_id, dependency_id)
    if not removed:
        raise TaskStoreWriteError(
            reason or f"Could not remove dependency {task_id} -> {dependency_id}",
            backend=store.name,
        )

    _audit.dependency_change(
        str(task_id), str(dependency_id), added=False, backend=store.name
    )
    logger.info("Removed dependency %s -> %s", task_id, dependency_id)
    return DependencyEdit(task_id, dependency_id, added=False)
