"""
Timeout budgets shared by the CLI and tool layers.

    FAST_TIMEOUT (5s)         - local tasks file reads and selection
    MEDIUM_TIMEOUT (30s)      - validation, single edge edits
    SLOW_TIMEOUT (120s)       - repair passes against a remote tracker
    BACKGROUND_TIMEOUT (600s) - very large projects

Mutations against a store are never retried automatically: a failed edge
removal is final for that pass and reported as unfixable.
"""

from typing import Optional

FAST_TIMEOUT: float = 5.0
MEDIUM_TIMEOUT: float = 30.0
SLOW_TIMEOUT: float = 120.0
BACKGROUND_TIMEOUT: float = 600.0


class TimeoutException(Exception):
    """Operation timed out.

    Attributes:
        timeout_seconds: The timeout duration that was exceeded.
        operation: Name of the operation that timed out.
    """

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds
        self.operation = operation
