"""CLI resilience wrappers for timeout and cancellation."""

import signal
import sys
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from taskgraph_mcp.core.resilience import (
    BACKGROUND_TIMEOUT,
    FAST_TIMEOUT,
    MEDIUM_TIMEOUT,
    SLOW_TIMEOUT,
    TimeoutException,
)

__all__ = [
    "FAST_TIMEOUT",
    "MEDIUM_TIMEOUT",
    "SLOW_TIMEOUT",
    "BACKGROUND_TIMEOUT",
    "TimeoutException",
    "with_sync_timeout",
    "handle_keyboard_interrupt",
]

T = TypeVar("T")


class _TimeoutHandler:
    """Context manager for signal-based timeout on Unix systems."""

    def __init__(self, seconds: float, error_message: str):
        self.seconds = max(1, int(seconds))  # signal.alarm requires int
        self.error_message = error_message
        self._old_handler = None

    def _timeout_handler(self, signum: int, frame: Any) -> None:
        raise TimeoutException(
            self.error_message,
            timeout_seconds=float(self.seconds),
            operation="cli_command",
        )

    def __enter__(self) -> "_TimeoutHandler":
        self._old_handler = signal.signal(signal.SIGALRM, self._timeout_handler)
        signal.alarm(self.seconds)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        signal.alarm(0)
        if self._old_handler is not None:
            signal.signal(signal.SIGALRM, self._old_handler)


def with_sync_timeout(
    seconds: float = MEDIUM_TIMEOUT,
    error_message: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to add a timeout to synchronous CLI commands.

    Uses SIGALRM, so the timeout is only enforced on Unix and only in the
    main thread; elsewhere the command runs unbounded.

    Example:
        >>> @with_sync_timeout(SLOW_TIMEOUT, "Dependency repair timed out")
        ... def fix():
        ...     ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            msg = error_message or f"{func.__name__} timed out after {seconds}s"

            if sys.platform == "win32" or not hasattr(signal, "SIGALRM"):
                return func(*args, **kwargs)

            try:
                handler = _TimeoutHandler(seconds, msg)
                handler.__enter__()
            except ValueError:
                # signal only works in the main thread
                return func(*args, **kwargs)
            try:
                return func(*args, **kwargs)
            finally:
                handler.__exit__(None, None, None)

        return wrapper

    return decorator


def handle_keyboard_interrupt(
    cleanup: Optional[Callable[[], None]] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator to exit with code 130 on Ctrl+C, running ``cleanup`` first."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except KeyboardInterrupt:
                if cleanup:
                    cleanup()
                # 128 + SIGINT
                sys.exit(130)

        return wrapper

    return decorator
