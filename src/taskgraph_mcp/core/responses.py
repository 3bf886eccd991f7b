"""
Standard response contracts for taskgraph-mcp tools and CLI commands.

Response Schema Contract
========================

Every MCP tool result and every CLI JSON document follows one envelope:

    {
        "success": bool,       # Required: operation success/failure
        "data": {...},         # Required: primary payload (error details on failure)
        "error": str | null,   # Required: error message or null on success
        "meta": {              # Required: response metadata
            "version": "response-v2",
            "request_id": "req_abc123"?,
            "warnings": ["..."]?,
            "telemetry": { ... }?
        }
    }

Key Principle:
    - ``success=True`` means the operation executed correctly, even when the
      answer is "no eligible task" or "graph has violations".
    - A repair pass whose individual removals partly failed is still a
      success; the failures are reported inside ``data``.
    - ``success=False`` means the operation could not run (store unavailable,
      unreadable tasks file, invalid input).
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from taskgraph_mcp.core.context import get_correlation_id

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable error codes for tool responses.

    Categories:
        - Validation (input errors)
        - Resource (not found, conflict, graph constraints)
        - Store (backing store reachability and reads)
        - System
    """

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    MISSING_REQUIRED = "MISSING_REQUIRED"

    # Resource errors
    NOT_FOUND = "NOT_FOUND"
    DEPENDENCY_NOT_FOUND = "DEPENDENCY_NOT_FOUND"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    SELF_REFERENCE = "SELF_REFERENCE"

    # Store errors
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    TASKS_READ_ERROR = "TASKS_READ_ERROR"
    TASKS_WRITE_ERROR = "TASKS_WRITE_ERROR"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    TIMEOUT = "TIMEOUT"


class ErrorType(str, Enum):
    """Error categories for routing and client-side handling.

    Each type corresponds to an HTTP status code analog and indicates
    whether the operation should be retried.
    """

    VALIDATION = "validation"  # 400 - No retry, fix input
    NOT_FOUND = "not_found"  # 404 - No retry
    CONFLICT = "conflict"  # 409 - No retry, change the graph first
    INTERNAL = "internal"  # 500 - Yes, with backoff
    UNAVAILABLE = "unavailable"  # 503 - Yes, after fixing configuration


@dataclass
class ToolResponse:
    """
    Standard response structure for tool operations.

    Attributes:
        success: Whether the operation completed successfully
        data: The primary payload (operation-specific structured data)
        error: Error message if success is False, None otherwise
        meta: Response metadata including version identifier
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=lambda: {"version": "response-v2"})


def _build_meta(
    *,
    request_id: Optional[str] = None,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Construct a metadata payload that always includes the response version.

    The request id falls back to the correlation id of the active request
    context when not passed explicitly.
    """
    meta: Dict[str, Any] = {"version": "response-v2"}

    effective_request_id = request_id or get_correlation_id() or None
    if effective_request_id:
        meta["request_id"] = effective_request_id
    if warnings:
        meta["warnings"] = list(warnings)
    if telemetry:
        meta["telemetry"] = dict(telemetry)
    if extra:
        meta.update(dict(extra))

    return meta


def success_response(
    data: Optional[Mapping[str, Any]] = None,
    *,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
    **fields: Any,
) -> ToolResponse:
    """Create a standardized success response.

    Args:
        data: Optional mapping used as the base payload.
        warnings: Non-fatal issues to surface in ``meta.warnings``.
        telemetry: Timing/performance metadata.
        request_id: Correlation identifier propagated through logs.
        meta: Arbitrary extra metadata to merge into ``meta``.
        **fields: Additional payload fields (shorthand for ``data.update``).
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))
    if fields:
        payload.update(fields)

    meta_payload = _build_meta(
        request_id=request_id,
        warnings=warnings,
        telemetry=telemetry,
        extra=meta,
    )

    return ToolResponse(success=True, data=payload, error=None, meta=meta_payload)


def error_response(
    message: str,
    *,
    data: Optional[Mapping[str, Any]] = None,
    error_code: Optional[Union[ErrorCode, str]] = None,
    error_type: Optional[Union[ErrorType, str]] = None,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> ToolResponse:
    """Create a standardized error response.

    Args:
        message: Human-readable description of the failure.
        data: Optional mapping with additional machine-readable context.
        error_code: Canonical error code (``ErrorCode`` or string).
        error_type: Error category for routing (``ErrorType`` or string).
        remediation: User-facing guidance on how to fix the issue.
        details: Nested structure describing validation failures or metadata.
        request_id: Correlation identifier propagated through logs.
        telemetry: Timing/performance metadata captured before failure.
        meta: Arbitrary extra metadata to merge into ``meta``.

    Example:
        >>> error_response(
        ...     "Tracker configuration incomplete: JIRA_API_TOKEN",
        ...     error_code=ErrorCode.STORE_UNAVAILABLE,
        ...     error_type=ErrorType.UNAVAILABLE,
        ... )
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))

    effective_error_code: Union[ErrorCode, str] = (
        error_code if error_code is not None else ErrorCode.INTERNAL_ERROR
    )
    effective_error_type: Union[ErrorType, str] = (
        error_type if error_type is not None else ErrorType.INTERNAL
    )

    if "error_code" not in payload:
        payload["error_code"] = (
            effective_error_code.value
            if isinstance(effective_error_code, Enum)
            else effective_error_code
        )
    if "error_type" not in payload:
        payload["error_type"] = (
            effective_error_type.value
            if isinstance(effective_error_type, Enum)
            else effective_error_type
        )
    if remediation is not None and "remediation" not in payload:
        payload["remediation"] = remediation
    if details and "details" not in payload:
        payload["details"] = dict(details)

    meta_payload = _build_meta(
        request_id=request_id,
        telemetry=telemetry,
        extra=meta,
    )

    return ToolResponse(success=False, data=payload, error=message, meta=meta_payload)


# ---------------------------------------------------------------------------
# Specialized Error Helpers
# ---------------------------------------------------------------------------


def validation_error(
    message: str,
    *,
    field: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create a validation error response (HTTP 400 analog).

    Example:
        >>> validation_error(
        ...     "Invalid task id: ''",
        ...     field="task_id",
        ...     remediation="Use an integer, a parent.sub address or a PROJ-123 key",
        ... )
    """
    error_details = dict(details) if details else {}
    if field and "field" not in error_details:
        error_details["field"] = field

    return error_response(
        message,
        error_code=ErrorCode.VALIDATION_ERROR,
        error_type=ErrorType.VALIDATION,
        details=error_details if error_details else None,
        remediation=remediation,
        request_id=request_id,
    )


def not_found_error(
    resource_type: str,
    resource_id: str,
    *,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create a not found error response (HTTP 404 analog).

    Example:
        >>> not_found_error("Task", "PROJ-42")
    """
    return error_response(
        f"{resource_type} '{resource_id}' not found",
        error_code=ErrorCode.NOT_FOUND,
        error_type=ErrorType.NOT_FOUND,
        data={"resource_type": resource_type, "resource_id": resource_id},
        remediation=remediation or f"Verify the {resource_type.lower()} ID exists.",
        request_id=request_id,
    )


def internal_error(
    message: str = "An internal error occurred",
    *,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an internal error response (HTTP 500 analog)."""
    remediation = "Please try again. If the problem persists, check the server logs."
    if request_id:
        remediation += f" Reference: {request_id}"

    return error_response(
        message,
        error_code=ErrorCode.INTERNAL_ERROR,
        error_type=ErrorType.INTERNAL,
        remediation=remediation,
        request_id=request_id,
    )


def store_unavailable_error(
    message: str,
    *,
    backend: Optional[str] = None,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an error response for a task store that cannot be used at all.

    Example:
        >>> store_unavailable_error("Tasks file not found: tasks/tasks.json", backend="local")
    """
    return error_response(
        message,
        error_code=ErrorCode.STORE_UNAVAILABLE,
        error_type=ErrorType.UNAVAILABLE,
        data={"backend": backend} if backend else None,
        remediation=remediation
        or "Check the tasks file path or the tracker connection settings.",
        request_id=request_id,
    )


def tasks_read_error(
    message: str,
    *,
    backend: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an error response for a failed task snapshot read."""
    return error_response(
        message,
        error_code=ErrorCode.TASKS_READ_ERROR,
        error_type=ErrorType.UNAVAILABLE,
        data={"backend": backend} if backend else None,
        remediation="Fix the tasks source and run the operation again.",
        request_id=request_id,
    )


# ---------------------------------------------------------------------------
# Dependency Edit Error Helpers
# ---------------------------------------------------------------------------


def circular_dependency_error(
    task_id: str,
    target_id: str,
    *,
    cycle_path: Optional[Sequence[str]] = None,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an error response for a dependency that would close a cycle.

    Example:
        >>> circular_dependency_error("3", "1", cycle_path=["1", "2", "3"])
    """
    data: Dict[str, Any] = {
        "task_id": task_id,
        "target_id": target_id,
    }
    if cycle_path:
        data["cycle_path"] = list(cycle_path)

    return error_response(
        f"Circular dependency detected: {task_id} cannot depend on {target_id}",
        error_code=ErrorCode.CIRCULAR_DEPENDENCY,
        error_type=ErrorType.CONFLICT,
        data=data,
        remediation=remediation
        or "Remove an existing dependency to break the cycle before adding this one.",
        request_id=request_id,
    )


def self_reference_error(
    task_id: str,
    operation: str,
    *,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an error response for a task referencing itself."""
    return error_response(
        f"Task '{task_id}' cannot reference itself in {operation}",
        error_code=ErrorCode.SELF_REFERENCE,
        error_type=ErrorType.VALIDATION,
        data={"task_id": task_id, "operation": operation},
        remediation=remediation or "Specify a different task ID as the target.",
        request_id=request_id,
    )


def duplicate_dependency_error(
    task_id: str,
    dependency_id: str,
    *,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an error response for adding an edge that already exists."""
    return error_response(
        f"Task '{task_id}' already depends on '{dependency_id}'",
        error_code=ErrorCode.DUPLICATE_ENTRY,
        error_type=ErrorType.CONFLICT,
        data={"task_id": task_id, "dependency_id": dependency_id},
        remediation="No change needed.",
        request_id=request_id,
    )


def dependency_not_found_error(
    task_id: str,
    dependency_id: str,
    *,
    remediation: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ToolResponse:
    """Create an error response for removing a dependency that isn't there.

    Example:
        >>> dependency_not_found_error("PROJ-1", "PROJ-7")
    """
    return error_response(
        f"Dependency '{dependency_id}' not found on task '{task_id}'",
        error_code=ErrorCode.DEPENDENCY_NOT_FOUND,
        error_type=ErrorType.NOT_FOUND,
        data={"task_id": task_id, "dependency_id": dependency_id},
        remediation=remediation
        or "Check existing dependencies with the dependency status action first.",
        request_id=request_id,
    )


# ---------------------------------------------------------------------------
# Error Message Sanitization
# ---------------------------------------------------------------------------


def sanitize_error_message(
    exc: Exception,
    context: str = "",
    include_type: bool = False,
) -> str:
    """
    Convert an unexpected exception to a user-safe message.

    The full exception is logged at debug level; the returned text never
    contains paths, stack traces or credentials.
    """
    if context:
        logger.debug(f"Error in {context}: {exc}", exc_info=True)
    else:
        logger.debug(f"Error: {exc}", exc_info=True)

    type_name = type(exc).__name__

    if isinstance(exc, FileNotFoundError):
        return "Required file or resource not found"
    if isinstance(exc, json.JSONDecodeError):
        return "Invalid JSON format"
    if isinstance(exc, PermissionError):
        return "Permission denied for requested operation"
    if isinstance(exc, ValueError):
        suffix = f" ({type_name})" if include_type else ""
        return f"Invalid value provided{suffix}"
    if isinstance(exc, ConnectionError):
        return "Connection failed - service may be unavailable"
    if isinstance(exc, OSError):
        return "System I/O error occurred"

    suffix = f" ({type_name})" if include_type else ""
    return f"An internal error occurred{suffix}"
