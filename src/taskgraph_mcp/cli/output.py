"""JSON output helpers for the taskgraph CLI.

This module is the sole output mechanism for the CLI. Envelopes are built
with ``taskgraph_mcp.core.responses`` so CLI output matches the
response-v2 schema returned by the MCP tools.
"""

import json
import sys
from dataclasses import asdict
from typing import Any, Mapping, NoReturn, Optional, Sequence

from taskgraph_mcp.cli.logging import generate_request_id, get_request_id, set_request_id
from taskgraph_mcp.core.responses import (
    error_response,
    store_unavailable_error,
    success_response,
    tasks_read_error,
)
from taskgraph_mcp.core.stores import StoreUnavailableError, TaskStoreReadError


def _ensure_request_id() -> str:
    request_id = get_request_id()
    if request_id:
        return request_id
    request_id = generate_request_id()
    set_request_id(request_id)
    return request_id


def emit(data: Any) -> None:
    """Emit minified JSON to stdout."""
    print(json.dumps(data, separators=(",", ":"), default=str))


def emit_error(
    message: str,
    code: str = "INTERNAL_ERROR",
    *,
    error_type: str = "internal",
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    data: Optional[Mapping[str, Any]] = None,
) -> NoReturn:
    """Emit an error envelope to stderr and exit with code 1.

    Args:
        message: Human-readable error description.
        code: Error code in SCREAMING_SNAKE_CASE (e.g. STORE_UNAVAILABLE).
        error_type: Error category (validation, not_found, conflict, ...).
        remediation: Actionable guidance for resolving the error.
        details: Optional additional error context.
        data: Optional machine-readable payload (e.g. a cycle path).

    Raises:
        SystemExit: Always exits with code 1.
    """
    response = error_response(
        message,
        data=data,
        error_code=code,
        error_type=error_type,
        remediation=remediation,
        details=details,
        request_id=_ensure_request_id(),
    )
    print(json.dumps(asdict(response), separators=(",", ":"), default=str), file=sys.stderr)
    sys.exit(1)


def emit_response(response: Any) -> None:
    """Emit a prebuilt ``ToolResponse``; error envelopes go to stderr with exit 1."""
    payload = asdict(response)
    if response.success:
        emit(payload)
        return
    print(json.dumps(payload, separators=(",", ":"), default=str), file=sys.stderr)
    sys.exit(1)


def emit_success(
    data: Any,
    *,
    warnings: Optional[Sequence[str]] = None,
    telemetry: Optional[Mapping[str, Any]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> None:
    """Emit a success envelope to stdout.

    Non-dict payloads are wrapped under a ``result`` key.
    """
    payload = data if isinstance(data, dict) else {"result": data}
    response = success_response(
        data=payload,
        warnings=warnings,
        telemetry=telemetry,
        meta=meta,
        request_id=_ensure_request_id(),
    )
    emit(asdict(response))


def emit_store_error(exc: Exception) -> NoReturn:
    """Emit the envelope for a fatal task store error and exit 1."""
    backend = getattr(exc, "backend", None)
    if isinstance(exc, StoreUnavailableError):
        response = store_unavailable_error(
            str(exc), backend=backend, request_id=_ensure_request_id()
        )
    elif isinstance(exc, TaskStoreReadError):
        response = tasks_read_error(str(exc), backend=backend, request_id=_ensure_request_id())
    else:
        emit_error(
            str(exc),
            code="TASKS_WRITE_ERROR",
            error_type="unavailable",
            remediation="Check the store and retry the operation.",
            data={"backend": backend} if backend else None,
        )
    emit_response(response)
    sys.exit(1)
