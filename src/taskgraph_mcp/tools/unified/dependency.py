"""Unified dependency router: validate, repair and edit dependency edges."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict
from typing import Any, Dict, Optional, Union

from mcp.server.fastmcp import FastMCP

from taskgraph_mcp.config import ServerConfig
from taskgraph_mcp.core.dependencies import (
    CircularDependencyError,
    DependencyEditError,
    DependencyNotFoundError,
    DuplicateDependencyError,
    SelfDependencyError,
    add_dependency,
    build_validation_report,
    fix_dependencies,
    remove_dependency,
)
from taskgraph_mcp.core.models import TaskNotFoundError
from taskgraph_mcp.core.naming import canonical_tool
from taskgraph_mcp.core.observability import get_metrics
from taskgraph_mcp.core.responses import (
    ErrorCode,
    ErrorType,
    circular_dependency_error,
    dependency_not_found_error,
    duplicate_dependency_error,
    error_response,
    internal_error,
    not_found_error,
    sanitize_error_message,
    self_reference_error,
    success_response,
)
from taskgraph_mcp.core.selector import get_dependency_status
from taskgraph_mcp.core.stores import TaskStoreError
from taskgraph_mcp.tools.unified.common import (
    open_store,
    parse_id_field,
    request_id as _base_request_id,
    store_error_response,
)
from taskgraph_mcp.tools.unified.router import (
    ActionDefinition,
    ActionRouter,
    ActionRouterError,
)

logger = logging.getLogger(__name__)
_metrics = get_metrics()

_TOOL = "dependency"


def _request_id() -> str:
    return _base_request_id("dependency")


def _metric(action: str) -> str:
    return f"unified_tools.dependency.{action.replace('-', '_')}"


def _telemetry(start: float) -> Dict[str, Any]:
    elapsed_ms = (time.perf_counter() - start) * 1000
    return {"duration_ms": round(elapsed_ms, 2)}


def _edit_error(exc: Exception, *, operation: str, request_id: str) -> dict:
    """Map a rejected manual edit onto its response helper."""
    if isinstance(exc, TaskNotFoundError):
        response = not_found_error("Task", str(exc.task_id), request_id=request_id)
    elif isinstance(exc, SelfDependencyError):
        response = self_reference_error(
            str(exc.task_id), operation, request_id=request_id
        )
    elif isinstance(exc, DuplicateDependencyError):
        response = duplicate_dependency_error(
            str(exc.task_id), str(exc.dependency_id), request_id=request_id
        )
    elif isinstance(exc, CircularDependencyError):
        response = circular_dependency_error(
            str(exc.task_id),
            str(exc.dependency_id),
            cycle_path=[str(node) for node in exc.cycle],
            request_id=request_id,
        )
    elif isinstance(exc, DependencyNotFoundError):
        response = dependency_not_found_error(
            str(exc.task_id), str(exc.dependency_id), request_id=request_id
        )
    else:
        response = error_response(
            str(exc),
            error_code=ErrorCode.VALIDATION_ERROR,
            error_type=ErrorType.VALIDATION,
            request_id=request_id,
        )
    return asdict(response)


def _handle_validate(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "validate"
    start = time.perf_counter()

    store = open_store(config, payload)
    try:
        store.ensure_available()
        report = build_validation_report(store.list_tasks())
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(
            exc, request_id=request_id, telemetry=_telemetry(start)
        )
    finally:
        store.close()

    warnings = None
    if not report["valid"]:
        warnings = [f"{len(report['issues'])} invalid dependencies found"]

    _metrics.gauge(
        "dependencies.violations", len(report["issues"]), labels={"backend": store.name}
    )
    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            backend=store.name,
            warnings=warnings,
            request_id=request_id,
            telemetry=_telemetry(start),
            **report,
        )
    )


def _handle_fix(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "fix"
    start = time.perf_counter()

    store = open_store(config, payload)
    try:
        result = fix_dependencies(store)
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(
            exc, request_id=request_id, telemetry=_telemetry(start)
        )
    finally:
        store.close()

    warnings = None
    if result.unfixable:
        warnings = [
            f"{failure.violation.task_id} -> {failure.violation.dependency_id}: "
            f"{failure.reason}"
            for failure in result.failures
        ]

    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            backend=store.name,
            warnings=warnings,
            request_id=request_id,
            telemetry=_telemetry(start),
            **result.to_dict(),
        )
    )


def _handle_edit(
    *, config: ServerConfig, payload: Dict[str, Any], action: str
) -> dict:
    request_id = _request_id()
    task_id, error = parse_id_field(
        payload, "task_id", tool=_TOOL, action=action, request_id=request_id
    )
    if error:
        return error
    depends_on, error = parse_id_field(
        payload, "depends_on", tool=_TOOL, action=action, request_id=request_id
    )
    if error:
        return error
    assert task_id is not None and depends_on is not None

    start = time.perf_counter()
    store = open_store(config, payload)
    try:
        if action == "add":
            edit = add_dependency(store, task_id, depends_on)
        else:
            edit = remove_dependency(store, task_id, depends_on)
    except (DependencyEditError, TaskNotFoundError) as exc:
        _metrics.counter(_metric(action), labels={"status": "rejected"})
        return _edit_error(exc, operation=f"dependency {action}", request_id=request_id)
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(
            exc, request_id=request_id, telemetry=_telemetry(start)
        )
    finally:
        store.close()

    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            backend=store.name,
            request_id=request_id,
            telemetry=_telemetry(start),
            **edit.to_dict(),
        )
    )


def _handle_add(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    return _handle_edit(config=config, payload=payload, action="add")


def _handle_remove(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    return _handle_edit(config=config, payload=payload, action="remove")


def _handle_status(*, config: ServerConfig, payload: Dict[str, Any]) -> dict:
    request_id = _request_id()
    action = "status"
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
        status = get_dependency_status(store.list_tasks(), task_id)
    except TaskNotFoundError as exc:
        return _edit_error(exc, operation=action, request_id=request_id)
    except TaskStoreError as exc:
        _metrics.counter(_metric(action), labels={"status": "error"})
        return store_error_response(
            exc, request_id=request_id, telemetry=_telemetry(start)
        )
    finally:
        store.close()

    _metrics.counter(_metric(action), labels={"status": "success"})
    return asdict(
        success_response(
            backend=store.name,
            request_id=request_id,
            telemetry=_telemetry(start),
            **status.to_dict(),
        )
    )


_ACTION_DEFINITIONS = [
    ActionDefinition(
        name="validate",
        handler=_handle_validate,
        summary="Report self, missing and circular dependencies",
        aliases=("check",),
    ),
    ActionDefinition(
        name="fix",
        handler=_handle_fix,
        summary="Remove every invalid dependency edge",
        aliases=("repair",),
    ),
    ActionDefinition(
        name="add", handler=_handle_add, summary="Add a dependency edge"
    ),
    ActionDefinition(
        name="remove", handler=_handle_remove, summary="Remove a dependency edge"
    ),
    ActionDefinition(
        name="status",
        handler=_handle_status,
        summary="Show what blocks a task and what it blocks",
    ),
]

_DEPENDENCY_ROUTER = ActionRouter(tool_name=_TOOL, actions=_ACTION_DEFINITIONS)


def _dispatch_dependency_action(
    *, action: str, payload: Dict[str, Any], config: ServerConfig
) -> dict:
    try:
        return _DEPENDENCY_ROUTER.dispatch(action=action, config=config, payload=payload)
    except ActionRouterError as exc:
        request_id = _request_id()
        allowed = ", ".join(exc.allowed_actions)
        return asdict(
            error_response(
                f"Unsupported dependency action '{action}'. Allowed actions: {allowed}",
                error_code=ErrorCode.VALIDATION_ERROR,
                error_type=ErrorType.VALIDATION,
                remediation=f"Use one of: {allowed}",
                request_id=request_id,
            )
        )
    except Exception as exc:
        logger.exception("Unexpected error in dependency action %s", action)
        _metrics.counter(_metric(str(action)), labels={"status": "error"})
        return asdict(
            internal_error(
                sanitize_error_message(exc, context="dependency"),
                request_id=_request_id(),
            )
        )


def register_unified_dependency_tool(mcp: FastMCP, config: ServerConfig) -> None:
    """Register the consolidated dependency tool."""

    @canonical_tool(
        mcp,
        canonical_name="dependency",
    )
    def dependency(
        action: str,
        task_id: Optional[Union[str, int]] = None,
        depends_on: Optional[Union[str, int]] = None,
        tasks_file: Optional[str] = None,
        parent_key: Optional[str] = None,
    ) -> dict:
        payload = {
            "task_id": task_id,
            "depends_on": depends_on,
            "tasks_file": tasks_file,
            "parent_key": parent_key,
        }
        return _dispatch_dependency_action(action=action, payload=payload, config=config)

    logger.debug("Registered unified dependency tool")


__all__ = [
    "register_unified_dependency_tool",
]
