"""Helpers shared by the dependency and task tool routers."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, Dict, Optional, Tuple

from taskgraph_mcp.config import ServerConfig
from taskgraph_mcp.core.context import (
    generate_correlation_id,
    get_correlation_id,
    set_backend,
)
from taskgraph_mcp.core.models import InvalidTaskIdError, TaskId, parse_task_id
from taskgraph_mcp.core.responses import (
    ErrorCode,
    ErrorType,
    error_response,
    store_unavailable_error,
    tasks_read_error,
)
from taskgraph_mcp.core.stores import (
    StoreUnavailableError,
    TaskStore,
    TaskStoreError,
    TaskStoreReadError,
    create_task_store,
)

logger = logging.getLogger(__name__)


def request_id(prefix: str) -> str:
    return get_correlation_id() or generate_correlation_id(prefix=prefix)


def validation_error(
    *,
    tool: str,
    field: str,
    action: str,
    message: str,
    request_id: str,
    code: ErrorCode = ErrorCode.MISSING_REQUIRED,
    remediation: Optional[str] = None,
) -> dict:
    effective_remediation = remediation or f"Provide a valid '{field}' value"
    return asdict(
        error_response(
            f"Invalid field '{field}' for {tool}.{action}: {message}",
            error_code=code,
            error_type=ErrorType.VALIDATION,
            remediation=effective_remediation,
            details={"field": field, "action": f"{tool}.{action}"},
            request_id=request_id,
        )
    )


def parse_id_field(
    payload: Dict[str, Any],
    field: str,
    *,
    tool: str,
    action: str,
    request_id: str,
) -> Tuple[Optional[TaskId], Optional[dict]]:
    """Read a required task id from the payload.

    Returns:
        (task_id, None) on success, (None, error envelope) otherwise
    """
    raw = payload.get(field)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None, validation_error(
            tool=tool,
            field=field,
            action=action,
            message="Provide a task identifier",
            request_id=request_id,
        )
    try:
        return parse_task_id(raw), None
    except InvalidTaskIdError as exc:
        return None, validation_error(
            tool=tool,
            field=field,
            action=action,
            message=str(exc),
            request_id=request_id,
            code=ErrorCode.INVALID_FORMAT,
            remediation="Use an integer id, a parent.sub address, or a tracker key like PROJ-123",
        )


def open_store(config: ServerConfig, payload: Dict[str, Any]) -> TaskStore:
    """Build the configured store, honouring per-call overrides."""
    store = create_task_store(
        config,
        tasks_file=payload.get("tasks_file") or None,
        parent_key=payload.get("parent_key") or None,
    )
    set_backend(store.name)
    return store


def store_error_response(
    exc: TaskStoreError,
    *,
    request_id: str,
    telemetry: Optional[Dict[str, Any]] = None,
) -> dict:
    """Map a fatal store error onto a response envelope."""
    backend = exc.backend
    if isinstance(exc, StoreUnavailableError):
        response = store_unavailable_error(str(exc), backend=backend, request_id=request_id)
    elif isinstance(exc, TaskStoreReadError):
        response = tasks_read_error(str(exc), backend=backend, request_id=request_id)
    else:
        response = error_response(
            str(exc),
            error_code=ErrorCode.TASKS_WRITE_ERROR,
            error_type=ErrorType.UNAVAILABLE,
            data={"backend": backend} if backend else None,
            remediation="Check the store and retry the operation.",
            request_id=request_id,
        )
    if telemetry:
        response.meta["telemetry"] = dict(telemetry)
    logger.warning(f"Task store error: {exc}", extra={"backend": backend})
    return asdict(response)
