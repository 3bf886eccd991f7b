"""Request context propagation for tool calls and CLI commands.

Every MCP tool invocation and CLI command runs inside a request context that
carries a correlation id, the calling client and the name of the task store
backend being operated on. Log records and response envelopes read these
values so one validate or fix pass can be followed end to end.

Usage:
    from taskgraph_mcp.core.context import sync_request_context

    with sync_request_context(backend="local") as ctx:
        logger.info("Validating dependencies")  # tagged with ctx.correlation_id
"""

from __future__ import annotations

import secrets
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

__all__ = [
    "correlation_id_var",
    "client_id_var",
    "start_time_var",
    "backend_var",
    "RequestContext",
    "generate_correlation_id",
    "sync_request_context",
    "get_correlation_id",
    "get_client_id",
    "get_start_time",
    "get_backend",
    "set_backend",
    "get_current_context",
]

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
"""Request correlation ID for tracing requests across components."""

client_id_var: ContextVar[str] = ContextVar("client_id", default="anonymous")
"""Identifier for the client making the request."""

start_time_var: ContextVar[float] = ContextVar("start_time", default=0.0)
"""Request start time as Unix timestamp."""

backend_var: ContextVar[str] = ContextVar("backend", default="")
"""Name of the task store backend serving the current request."""


def generate_correlation_id(prefix: str = "req") -> str:
    """Generate a unique correlation ID with optional prefix.

    Format: {prefix}_{12_hex_chars}
    Example: "req_a1b2c3d4e5f6"
    """
    return f"{prefix}_{secrets.token_hex(6)}"


@dataclass
class RequestContext:
    """Snapshot of the current request context.

    Attributes:
        correlation_id: Unique request identifier
        client_id: Client/user identifier
        start_time: Request start timestamp
        backend: Task store backend label ("local", "tracker") if known
    """

    correlation_id: str = ""
    client_id: str = "anonymous"
    start_time: float = field(default_factory=time.time)
    backend: str = ""

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds elapsed since the request started."""
        if self.start_time <= 0:
            return 0.0
        return (time.time() - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for logging/serialization."""
        result: Dict[str, Any] = {
            "correlation_id": self.correlation_id,
            "client_id": self.client_id,
            "start_time": self.start_time,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.backend:
            result["backend"] = self.backend
        return result


@contextmanager
def sync_request_context(
    *,
    correlation_id: Optional[str] = None,
    client_id: Optional[str] = None,
    backend: Optional[str] = None,
) -> Generator[RequestContext, None, None]:
    """Set the request context variables for the duration of a with block.

    Args:
        correlation_id: Request ID (auto-generated if None)
        client_id: Client identifier (default: "anonymous")
        backend: Task store backend label

    Yields:
        RequestContext snapshot
    """
    corr_id = correlation_id or generate_correlation_id()
    client = client_id or "anonymous"
    start = time.time()
    store = backend or backend_var.get()

    token_corr = correlation_id_var.set(corr_id)
    token_client = client_id_var.set(client)
    token_start = start_time_var.set(start)
    token_backend = backend_var.set(store)

    try:
        yield RequestContext(
            correlation_id=corr_id,
            client_id=client,
            start_time=start,
            backend=store,
        )
    finally:
        correlation_id_var.reset(token_corr)
        client_id_var.reset(token_client)
        start_time_var.reset(token_start)
        backend_var.reset(token_backend)


def get_correlation_id() -> str:
    """Current correlation ID, or empty string outside a request."""
    return correlation_id_var.get()


def get_client_id() -> str:
    return client_id_var.get()


def get_start_time() -> float:
    return start_time_var.get()


def get_backend() -> str:
    return backend_var.get()


def set_backend(name: str) -> None:
    """Record the backend serving the current request.

    Called once the store has been chosen, which happens after the request
    context is opened.
    """
    backend_var.set(name)


def get_current_context() -> RequestContext:
    """Get a snapshot of all current context values."""
    return RequestContext(
        correlation_id=get_correlation_id(),
        client_id=get_client_id(),
        start_time=get_start_time(),
        backend=get_backend(),
    )
