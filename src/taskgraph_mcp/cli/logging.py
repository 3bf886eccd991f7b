"""Structured logging hooks for CLI commands.

Provides request ID generation, metrics emission and structured logging
for CLI command execution on top of the core observability primitives.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from taskgraph_mcp.core.observability import get_metrics, redact_sensitive_data

__all__ = [
    "generate_request_id",
    "get_request_id",
    "set_request_id",
    "cli_command",
    "get_cli_logger",
    "CLILogContext",
]

T = TypeVar("T")

_request_id: ContextVar[str] = ContextVar("cli_request_id", default="")


def generate_request_id() -> str:
    """Short unique id for correlating one CLI invocation's logs."""
    return f"cli_{uuid.uuid4().hex[:12]}"


def get_request_id() -> str:
    return _request_id.get()


def set_request_id(request_id: str) -> None:
    _request_id.set(request_id)


class CLILogContext:
    """Context manager that sets a request ID for the duration of a command.

    Example:
        >>> with CLILogContext() as ctx:
        ...     logger.info("Repairing", extra={"request_id": ctx.request_id})
    """

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or generate_request_id()
        self._token = None

    def __enter__(self) -> "CLILogContext":
        self._token = _request_id.set(self.request_id)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._token is not None:
            _request_id.reset(self._token)


class CLILogger:
    """Logger that attaches the request ID and redacts credentials."""

    def __init__(self, name: str = "taskgraph_mcp.cli"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, **extra: Any) -> None:
        context = {
            "request_id": get_request_id(),
            **redact_sensitive_data(extra),
        }
        self._logger.log(level, message, extra={"cli_context": context})

    def debug(self, message: str, **extra: Any) -> None:
        self._log(logging.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self._log(logging.INFO, message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        self._log(logging.WARNING, message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        self._log(logging.ERROR, message, **extra)


_cli_logger = CLILogger()


def get_cli_logger() -> CLILogger:
    """Get the global CLI logger."""
    return _cli_logger


def cli_command(
    command_name: Optional[str] = None,
    emit_metrics: bool = True,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator for CLI commands with observability.

    Generates a request ID, logs command start and end, and emits
    ``cli.command.invocations`` / ``cli.command.latency`` metrics.

    Example:
        >>> @cli_command("deps-validate")
        ... def validate(ctx):
        ...     ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = command_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            with CLILogContext():
                start = time.perf_counter()
                success = True
                error_msg = None

                _cli_logger.debug(f"CLI command started: {name}", command=name)

                try:
                    return func(*args, **kwargs)
                except SystemExit as e:
                    success = e.code in (0, None)
                    raise
                except Exception as e:
                    success = False
                    error_msg = str(e)
                    raise
                finally:
                    duration_ms = (time.perf_counter() - start) * 1000
                    _cli_logger.debug(
                        f"CLI command completed: {name}",
                        command=name,
                        success=success,
                        duration_ms=round(duration_ms, 2),
                        error=error_msg,
                    )

                    if emit_metrics:
                        metrics = get_metrics()
                        metrics.counter(
                            "cli.command.invocations",
                            labels={
                                "command": name,
                                "status": "success" if success else "error",
                            },
                        )
                        metrics.timer(
                            "cli.command.latency",
                            duration_ms,
                            labels={"command": name},
                        )

        return wrapper

    return decorator
