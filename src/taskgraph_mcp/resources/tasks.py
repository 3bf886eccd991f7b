"""
Task resources for taskgraph-mcp.

Read-only MCP resources over the configured task store: the flattened task
list, the validation report and one task's dependency status.
"""

import json
import logging
from typing import Any, Dict

from mcp.server.fastmcp import FastMCP

from taskgraph_mcp.config import ServerConfig
from taskgraph_mcp.core.dependencies import build_validation_report
from taskgraph_mcp.core.models import (
    InvalidTaskIdError,
    TaskNotFoundError,
    flatten_tasks,
    parse_task_id,
)
from taskgraph_mcp.core.selector import get_dependency_status
from taskgraph_mcp.core.stores import TaskStoreError, create_task_store

logger = logging.getLogger(__name__)


# Schema version for resource responses
SCHEMA_VERSION = "1.0.0"


def _dump(payload: Dict[str, Any]) -> str:
    return json.dumps(
        {"schema_version": SCHEMA_VERSION, **payload}, separators=(",", ":")
    )


def register_task_resources(mcp: FastMCP, config: ServerConfig) -> None:
    """
    Register task resources with the FastMCP server.

    Args:
        mcp: FastMCP server instance
        config: Server configuration
    """

    def _snapshot():
        store = create_task_store(config)
        try:
            store.ensure_available()
            return store.name, store.list_tasks()
        finally:
            store.close()

    # Resource: taskgraph://tasks/ - Flattened task list
    @mcp.resource("taskgraph://tasks/")
    def resource_tasks() -> str:
        """List every task and subtask in the configured store."""
        try:
            backend, tasks = _snapshot()
        except TaskStoreError as exc:
            return _dump({"success": False, "error": str(exc)})

        flat = flatten_tasks(tasks)
        return _dump({
            "success": True,
            "backend": backend,
            "tasks": [task.summary() for task in flat],
            "count": len(flat),
        })

    # Resource: taskgraph://validation/ - Dependency validation report
    @mcp.resource("taskgraph://validation/")
    def resource_validation() -> str:
        """Validate the dependency graph without changing it."""
        try:
            backend, tasks = _snapshot()
        except TaskStoreError as exc:
            return _dump({"success": False, "error": str(exc)})

        return _dump({"success": True, "backend": backend, **build_validation_report(tasks)})

    # Resource: taskgraph://tasks/{task_id}/dependencies - One task's status
    @mcp.resource("taskgraph://tasks/{task_id}/dependencies")
    def resource_task_dependencies(task_id: str) -> str:
        """
        Show what blocks a task and what it blocks.

        Args:
            task_id: Task id, subtask address or tracker key
        """
        try:
            parsed = parse_task_id(task_id)
        except InvalidTaskIdError as exc:
            return _dump({"success": False, "error": str(exc)})

        try:
            _, tasks = _snapshot()
            status = get_dependency_status(tasks, parsed)
        except (TaskStoreError, TaskNotFoundError) as exc:
            return _dump({"success": False, "error": str(exc)})

        return _dump({"success": True, **status.to_dict()})

    logger.debug("Registered task resources")
