"""Dependency graph engine and task stores for taskgraph-mcp."""

from taskgraph_mcp.core.dependencies import (
    RepairResult,
    Violation,
    ViolationType,
    add_dependency,
    build_validation_report,
    fix_dependencies,
    remove_dependency,
    validate_dependencies,
)
from taskgraph_mcp.core.graph import DependencyGraph
from taskgraph_mcp.core.models import (
    ExternalKey,
    NumericId,
    SubtaskAddress,
    Task,
    TaskPriority,
    TaskStatus,
    parse_task_id,
)
from taskgraph_mcp.core.selector import get_dependency_status, select_next_task
from taskgraph_mcp.core.tasks import get_task_details, set_task_status

__all__ = [
    "DependencyGraph",
    "ExternalKey",
    "NumericId",
    "RepairResult",
    "SubtaskAddress",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "Violation",
    "ViolationType",
    "add_dependency",
    "build_validation_report",
    "fix_dependencies",
    "get_dependency_status",
    "get_task_details",
    "parse_task_id",
    "remove_dependency",
    "select_next_task",
    "set_task_status",
    "validate_dependencies",
]
