"""Unified task router: next-task selection, listing, lookup and status changes."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP

from taskgraph_mcp.config import ServerConfig
from taskgraph_mcp.core.models import TaskNotFoundError, TaskStatus, flatten_tasks
from taskgraph_mcp.core.naming import canonical_tool
from taskgraph_mcp.core.observability import get_metrics
from taskgraph_mcp.core.responses import (
    ErrorCode,
    ErrorType,
    error_response,
    internal_error,
    not_found_error,
    sanitize_error_message,
    success_response,
)
from taskgraph_mcp.core.selector import eligible_tasks
from taskgraph_mcp.core.stores import TaskStoreError
from taskgraph_mcp.core.tasks import get_task_details, set_task_status
from taskgraph_mcp.tools.unified.common import (
    open_store,
    parse_id_field,
    request_id as _base_request_id,
    store_error_response,
    validation_error,
)
from taskgraph_mcp.tools.unified.router import (
    ActionDefinition,
    ActionRouter,
    ActionRouterError,
)

logger = logging.getLogger(__name__)
_metrics = get_metrics()

_TOOL = "task"
_ALLOWED_STATUS = [status.value for status in TaskStatus]


def _request_id() -> str:
    return _base_request_id("task")


def _metric(action: str) -> str:
    return f"unified_tools.task.{action.replace('-', '_')}"


def _handle_next(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "next"
    start = time.perf_counter()

    store = open_store(config, payload)
    try:
        store.ensure_available()
        tasks = flatten_tasks(store.list_tasks())
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(exc, request_id=request_id)
    finally:
        store.close()

    candidates = eligible_tasks(tasks)
    elapsed_ms = (time.perf_counter() - start) * 1000
    telemetry = {"duration_ms": round(elapsed_ms, 2)}

    if candidates:
        chosen = candidates[0]
        response = success_response(
            found=True,
            task=chosen.summary(),
            eligible_count=len(candidates),
            backend=store.name,
            request_id=request_id,
            telemetry=telemetry,
        )
    else:
        pending = sum(1 for task in tasks if task.status is TaskStatus.PENDING)
        complete = bool(tasks) and all(task.is_satisfied for task in tasks)
        response = success_response(
            found=False,
            task=None,
            all_complete=complete,
            message="All tasks completed"
            if complete
            else f"No eligible tasks ({pending} pending task(s) are waiting on dependencies)",
            backend=store.name,
            request_id=request_id,
            telemetry=telemetry,
        )

    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(response)


def _handle_list(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "list"

    status_filter = payload.get("status_filter")
    wanted: Optional[TaskStatus] = None
    if status_filter is not None:
        wanted = TaskStatus.lookup(status_filter)
        if wanted is None:
            return validation_error(
                tool=_TOOL,
                field="status_filter",
                action=action,
                message=f"Unknown status '{status_filter}'",
                request_id=request_id,
                code=ErrorCode.INVALID_FORMAT,
                remediation=f"Use one of: {', '.join(_ALLOWED_STATUS)}",
            )

    start = time.perf_counter()
    store = open_store(config, payload)
    try:
        store.ensure_available()
        tasks = flatten_tasks(store.list_tasks())
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(exc, request_id=request_id)
    finally:
        store.close()

    selected: List[Dict[str, Any]] = [
        task.summary()
        for task in tasks
        if wanted is None or task.status is wanted
    ]
    elapsed_ms = (time.perf_counter() - start) * 1000

    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            tasks=selected,
            count=len(selected),
            total=len(tasks),
            status_filter=wanted.value if wanted else None,
            backend=store.name,
            request_id=request_id,
            telemetry={"duration_ms": round(elapsed_ms, 2)},
        )
    )


def _handle_get(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "get"
    task_id, error = parse_id_field(
        payload, "task_id", tool=_TOOL, action=action, request_id=request_id
    )
    if error:
        return error
    assert task_id is not None

    start = time.perf_counter()
    store = open_store(config, payload)
    try:
        store.ensure_available()
        details = get_task_details(store.list_tasks(), task_id)
    except TaskNotFoundError:
        _metrics.counter(_metric(action), labels={"status": "not_found"})
        return asdict(not_found_error("Task", str(task_id), request_id=request_id))
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(exc, request_id=request_id)
    finally:
        store.close()

    elapsed_ms = (time.perf_counter() - start) * 1000
    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            backend=store.name,
            request_id=request_id,
            telemetry={"duration_ms": round(elapsed_ms, 2)},
            **details.to_dict(),
        )
    )


def _handle_set_status(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "set-status"
    task_id, error = parse_id_field(
        payload, "task_id", tool=_TOOL, action=action, request_id=request_id
    )
    if error:
        return error
    assert task_id is not None

    raw_status = payload.get("status")
    if raw_status is None or not str(raw_status).strip():
        return validation_error(
            tool=_TOOL,
            field="status",
            action=action,
            message="Provide the new status",
            request_id=request_id,
            remediation=f"Use one of: {', '.join(_ALLOWED_STATUS)}",
        )
    status = TaskStatus.lookup(raw_status)
    if status is None:
        return validation_error(
            tool=_TOOL,
            field="status",
            action=action,
            message=f"Unknown status '{raw_status}'",
            request_id=request_id,
            code=ErrorCode.INVALID_FORMAT,
            remediation=f"Use one of: {', '.join(_ALLOWED_STATUS)}",
        )

    start = time.perf_counter()
    store = open_store(config, payload)
    try:
        change = set_task_status(store, task_id, status)
    except TaskNotFoundError:
        _metrics.counter(_metric(action), labels={"status": "not_found"})
        return asdict(not_found_error("Task", str(task_id), request_id=request_id))
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(exc, request_id=request_id)
    finally:
        store.close()

    warnings = [
        f"Subtask {sub} was not updated: {reason}" for sub, reason in change.failures
    ] or None
    elapsed_ms = (time.perf_counter() - start) * 1000
    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            backend=store.name,
            warnings=warnings,
            request_id=request_id,
            telemetry={"duration_ms": round(elapsed_ms, 2)},
            **change.to_dict(),
        )
    )


_ACTION_DEFINITIONS = [
    ActionDefinition(
        name="next",
        handler=_handle_next,
        summary="Return the highest-priority task that can start now",
    ),
    ActionDefinition(
        name="list", handler=_handle_list, summary="List tasks, optionally by status"
    ),
    ActionDefinition(
        name="get",
        handler=_handle_get,
        summary="Show one task with its subtasks and dependency standing",
        aliases=("show",),
    ),
    ActionDefinition(
        name="set-status",
        handler=_handle_set_status,
        summary="Change a task's status (completing a parent completes its subtasks)",
    ),
]

_TASK_ROUTER = ActionRouter(tool_name=_TOOL, actions=_ACTION_DEFINITIONS)


def _dispatch_task_action(
    *, action: str, payload: Dict[str, Any], config: ServerConfig
) -> dict:
    try:
        return _TASK_ROUTER.dispatch(action=action, config=config, payload=payload)
    except ActionRouterError as exc:
        request_id = _request_id()
        allowed = ", ".join(exc.allowed_actions)
        return asdict(
            error_response(
                f"Unsupported task action '{action}'. Allowed actions: {allowed}",
                error_code=ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.VALIDATION,
                remediation=f"Use one of: {allowed}",
                request_id=request_id,
            )
        )
    except Exception as exc:
        logger.exception("Unexpected error in task action %s", action)
        _metrics.counter(_metric(str(action)), labels={"status": "error"})
        return asdict(
            internal_error(
                sanitize_error_message(exc, context="task"),
                request_id=_request_id(),
            )
        )


def register_unified_task_tool(mcp: FastMCP, config: ServerConfig) -> None:
    """Register the consolidated task tool."""

    @canonical_tool(
        mcp,
        canonical_name="task",
    )
    def task(
        action: str,
        task_id: Optional[Union[str, int]] = None,
        status: Optional[str] = None,
        status_filter: Optional[str] = None,
        tasks_file: Optional[str] = None,
        parent_key: Optional[str] = None,
    ) -> dict:
        payload = {
            "task_id": task_id,
            "status": status,
            "status_filter": status_filter,
            "tasks_file": tasks_file,
            "parent_key": parent_key,
        }
        return _dispatch_task_action(action=action, payload=payload, config=config)

    logger.debug("Registered unified task tool")


__all__ = [
    "register_unified_task_tool",
]
