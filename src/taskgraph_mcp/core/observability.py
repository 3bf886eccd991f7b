"""
Observability utilities for taskgraph-mcp.

Provides metrics, audit logging and credential redaction for MCP tools and
the dependency engine. Metrics and audit events are emitted as structured
log records under ``taskgraph_mcp.core.observability.metrics`` and
``taskgraph_mcp.core.observability.audit`` so they can be filtered out of the
regular log stream.

FastMCP integration:

    from taskgraph_mcp.core.observability import mcp_tool, audit_log

    @mcp.tool()
    @mcp_tool(tool_name="dependency")
    def dependency(action: str) -> dict:
        audit_log("dependency_removed", task_id="PROJ-1", dependency_id="PROJ-2")
        ...
"""

import asyncio
import functools
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Final, List, Optional, Tuple, TypeVar, Union

from taskgraph_mcp.core.context import (
    generate_correlation_id,
    get_client_id,
    get_correlation_id,
    sync_request_context,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


SENSITIVE_PATTERNS: Final[List[Tuple[str, str]]] = [
    (r"(?i)(api[_-]?token|apitoken)\s*[:=]\s*['\"]?([a-zA-Z0-9_\-=]{16,})['\"]?", "API_TOKEN"),
    (r"(?i)(api[_-]?key|apikey)\s*[:=]\s*['\"]?([a-zA-Z0-9_\-]{20,})['\"]?", "API_KEY"),
    (r"(?i)basic\s+([a-zA-Z0-9+/]+={0,2})", "BASIC_AUTH"),
    (r"(?i)bearer\s+([a-zA-Z0-9_\-\.]+)", "BEARER_TOKEN"),
    (r"(?i)(password|passwd|pwd)\s*[:=]\s*['\"]?([^\s'\"]{4,})['\"]?", "PASSWORD"),
]
"""Patterns for credentials that must never reach logs or error envelopes."""

_SENSITIVE_KEYS: Final = frozenset(
    {
        "api_token",
        "apitoken",
        "api_key",
        "apikey",
        "token",
        "password",
        "secret",
        "auth",
        "authorization",
        "credentials",
    }
)


def redact_sensitive_data(
    data: Any,
    *,
    patterns: Optional[List[Tuple[str, str]]] = None,
    redaction_format: str = "[REDACTED:{label}]",
    max_depth: int = 10,
) -> Any:
    """Recursively redact credentials from strings, dicts, and lists.

    Values stored under well-known credential keys are replaced entirely;
    strings are scanned for ``SENSITIVE_PATTERNS``.

    Example:
        >>> redact_sensitive_data({"api_token": "abc", "project": "PROJ"})
        {'api_token': '[REDACTED:API_TOKEN]', 'project': 'PROJ'}
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    check_patterns = patterns if patterns is not None else SENSITIVE_PATTERNS

    if isinstance(data, str):
        result = data
        for pattern, label in check_patterns:
            result = re.sub(pattern, redaction_format.format(label=label), result)
        return result

    if isinstance(data, dict):
        redacted = {}
        for key, value in data.items():
            key_lower = str(key).lower().replace("-", "_")
            if key_lower in _SENSITIVE_KEYS:
                redacted[key] = f"[REDACTED:{key_lower.upper()}]"
            else:
                redacted[key] = redact_sensitive_data(
                    value,
                    patterns=check_patterns,
                    redaction_format=redaction_format,
                    max_depth=max_depth - 1,
                )
        return redacted

    if isinstance(data, (list, tuple)):
        items = [
            redact_sensitive_data(
                item,
                patterns=check_patterns,
                redaction_format=redaction_format,
                max_depth=max_depth - 1,
            )
            for item in data
        ]
        return tuple(items) if isinstance(data, tuple) else items

    return data


class MetricType(Enum):
    """Types of metrics that can be emitted."""

    COUNTER = "counter"
    GAUGE = "gauge"
    TIMER = "timer"


class AuditEventType(Enum):
    """Audit events: tool calls and every mutation of the task collection."""

    TOOL_INVOCATION = "tool_invocation"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    STATUS_CHANGED = "status_changed"


@dataclass
class Metric:
    """Structured metric data."""

    name: str
    value: Union[int, float]
    metric_type: MetricType
    labels: Dict[str, str] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "type": self.metric_type.value,
            "labels": self.labels,
            "timestamp": self.timestamp,
        }


@dataclass
class AuditEvent:
    """Structured audit event."""

    event_type: AuditEventType
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = None
    client_id: Optional[str] = None

    def __post_init__(self) -> None:
        """Auto-populate correlation_id and client_id from context if not set."""
        if self.correlation_id is None:
            self.correlation_id = get_correlation_id() or None
        if self.client_id is None:
            ctx_client = get_client_id()
            if ctx_client and ctx_client != "anonymous":
                self.client_id = ctx_client

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "details": self.details,
        }
        if self.correlation_id:
            result["correlation_id"] = self.correlation_id
        if self.client_id:
            result["client_id"] = self.client_id
        return result


class MetricsCollector:
    """
    Collects and emits metrics to the standard logger.

    Metrics are logged as structured records (``extra={"metric": ...}``) so the
    JSON formatter renders them for log aggregation systems.
    """

    def __init__(self, prefix: str = "taskgraph_mcp"):
        self.prefix = prefix
        self._logger = logging.getLogger(f"{__name__}.metrics")

    def emit(self, metric: Metric) -> None:
        self._logger.info(
            f"METRIC: {self.prefix}.{metric.name}", extra={"metric": metric.to_dict()}
        )

    def counter(
        self, name: str, value: int = 1, labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Emit a counter metric."""
        self.emit(Metric(name, value, MetricType.COUNTER, labels or {}))

    def gauge(
        self,
        name: str,
        value: Union[int, float],
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """Emit a gauge metric."""
        self.emit(Metric(name, value, MetricType.GAUGE, labels or {}))

    def timer(
        self, name: str, duration_ms: float, labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Emit a timer metric (duration in milliseconds)."""
        self.emit(Metric(name, duration_ms, MetricType.TIMER, labels or {}))


_metrics = MetricsCollector()


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return _metrics


class AuditLogger:
    """
    Structured audit logging for tool calls and graph mutations.

    Audit logs are written to a separate logger for easy filtering.
    """

    def __init__(self):
        self._logger = logging.getLogger(f"{__name__}.audit")

    def log(self, event: AuditEvent) -> None:
        self._logger.info(
            f"AUDIT: {event.event_type.value}", extra={"audit": event.to_dict()}
        )

    def dependency_change(
        self,
        task_id: str,
        dependency_id: str,
        *,
        added: bool,
        backend: Optional[str] = None,
        **details: Any,
    ) -> None:
        """Log a single dependency edge being added or removed."""
        self.log(
            AuditEvent(
                event_type=(
                    AuditEventType.DEPENDENCY_ADDED
                    if added
                    else AuditEventType.DEPENDENCY_REMOVED
                ),
                details={
                    "task_id": task_id,
                    "dependency_id": dependency_id,
                    "backend": backend,
                    **details,
                },
            )
        )

    def status_change(
        self,
        task_id: str,
        previous: str,
        status: str,
        *,
        backend: Optional[str] = None,
    ) -> None:
        """Log one task moving from ``previous`` to ``status``."""
        self.log(
            AuditEvent(
                event_type=AuditEventType.STATUS_CHANGED,
                details={
                    "task_id": task_id,
                    "previous": previous,
                    "status": status,
                    "backend": backend,
                },
            )
        )

    def tool_invocation(
        self,
        tool_name: str,
        success: bool = True,
        duration_ms: Optional[float] = None,
        correlation_id: Optional[str] = None,
        **details: Any,
    ) -> None:
        self.log(
            AuditEvent(
                event_type=AuditEventType.TOOL_INVOCATION,
                correlation_id=correlation_id,
                details={
                    "tool": tool_name,
                    "success": success,
                    "duration_ms": duration_ms,
                    **details,
                },
            )
        )


_audit = AuditLogger()


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger."""
    return _audit


def audit_log(event_type: str, **details: Any) -> None:
    """
    Convenience function for audit logging.

    Args:
        event_type: One of the ``AuditEventType`` values; unknown values are
            recorded as tool invocations with ``original_event_type`` set.
        **details: Additional details to include in the audit log
    """
    try:
        event_enum = AuditEventType(event_type)
    except ValueError:
        event_enum = AuditEventType.TOOL_INVOCATION
        details["original_event_type"] = event_type

    _audit.log(AuditEvent(event_type=event_enum, details=redact_sensitive_data(details)))


def mcp_tool(
    tool_name: Optional[str] = None, emit_metrics: bool = True, audit: bool = True
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for MCP tool handlers with observability.

    Establishes a request context when none is active, then logs the
    invocation, emits latency/status metrics and writes an audit entry.

    Args:
        tool_name: Override tool name (defaults to function name)
        emit_metrics: Whether to emit metrics
        audit: Whether to create audit log entries
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = tool_name or func.__name__

        def _record(corr_id: str, start: float, success: bool, error_msg, kwargs) -> None:
            duration_ms = (time.perf_counter() - start) * 1000
            action = kwargs.get("action") if isinstance(kwargs.get("action"), str) else None

            if emit_metrics:
                labels = {"tool": name, "status": "success" if success else "error"}
                if action:
                    labels["action"] = action
                _metrics.counter("tool.invocations", labels=labels)
                _metrics.timer("tool.latency", duration_ms, labels={"tool": name})

            if audit:
                _audit.tool_invocation(
                    tool_name=name,
                    success=success,
                    duration_ms=round(duration_ms, 2),
                    error=error_msg,
                    correlation_id=corr_id,
                    action=action,
                )

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            existing_corr_id = get_correlation_id()
            corr_id = existing_corr_id or generate_correlation_id(prefix="tool")
            with sync_request_context(correlation_id=corr_id, client_id=get_client_id()):
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _record(corr_id, start, False, str(e), kwargs)
                    raise
                _record(corr_id, start, True, None, kwargs)
                return result

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            existing_corr_id = get_correlation_id()
            corr_id = existing_corr_id or generate_correlation_id(prefix="tool")
            with sync_request_context(correlation_id=corr_id, client_id=get_client_id()):
                start = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _record(corr_id, start, False, str(e), kwargs)
                    raise
                _record(corr_id, start, True, None, kwargs)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
