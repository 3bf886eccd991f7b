"""Command registry for the taskgraph CLI.

Centralized registration of all command groups.
"""

from typing import Optional

import click

from taskgraph_mcp.cli.config import CLIContext

# Module-level storage for CLI context (for testing)
_cli_context: Optional[CLIContext] = None


def set_context(ctx: CLIContext) -> None:
    """Set the CLI context at module level.

    Primarily used for testing when not using Click's context.
    """
    global _cli_context
    _cli_context = ctx


def get_context(ctx: Optional[click.Context] = None) -> CLIContext:
    """Get CLI context from Click context or module-level storage.

    Raises:
        RuntimeError: If no context is available.
    """
    if ctx is not None:
        return ctx.obj["cli_context"]

    if _cli_context is not None:
        return _cli_context

    raise RuntimeError("No CLI context available. Call set_context() first.")


def register_all_commands(cli: click.Group) -> None:
    """Register all command groups with the CLI.

    Command groups are lazily imported to avoid circular dependencies.
    """
    from taskgraph_mcp.cli.commands import deps, tasks

    cli.add_command(deps)
    cli.add_command(tasks)

    @cli.command("version")
    @click.pass_context
    def version(ctx: click.Context) -> None:
        """Show CLI version information."""
        from taskgraph_mcp import __version__
        from taskgraph_mcp.cli.output import emit_success

        cli_ctx = get_context(ctx)
        emit_success(
            {
                "version": __version__,
                "name": "taskgraph",
                "json_only": True,
                "backend": cli_ctx.backend,
                "tasks_file": str(cli_ctx.tasks_file),
            }
        )
