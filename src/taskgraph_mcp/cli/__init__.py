"""taskgraph CLI - command-line interface for the dependency graph engine.

All commands emit response-v2 JSON envelopes: success to stdout, errors
to stderr with exit code 1.
"""

from taskgraph_mcp.cli.config import CLIContext, create_context
from taskgraph_mcp.cli.logging import (
    CLILogContext,
    cli_command,
    get_cli_logger,
    get_request_id,
    set_request_id,
)
from taskgraph_mcp.cli.main import cli
from taskgraph_mcp.cli.output import emit, emit_error, emit_success
from taskgraph_mcp.cli.registry import get_context, set_context
from taskgraph_mcp.cli.resilience import (
    FAST_TIMEOUT,
    MEDIUM_TIMEOUT,
    SLOW_TIMEOUT,
    handle_keyboard_interrupt,
    with_sync_timeout,
)

__all__ = [
    # Entry point
    "cli",
    # Context
    "CLIContext",
    "create_context",
    "get_context",
    "set_context",
    # Output
    "emit",
    "emit_error",
    "emit_success",
    # Logging
    "CLILogContext",
    "cli_command",
    "get_cli_logger",
    "get_request_id",
    "set_request_id",
    # Resilience
    "FAST_TIMEOUT",
    "MEDIUM_TIMEOUT",
    "SLOW_TIMEOUT",
    "with_sync_timeout",
    "handle_keyboard_interrupt",
]
