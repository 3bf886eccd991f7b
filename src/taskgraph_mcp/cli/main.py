"""taskgraph CLI entry point.

JSON-only output for AI coding assistants.
"""

from typing import Optional

import click

from taskgraph_mcp.cli.config import create_context
from taskgraph_mcp.cli.registry import register_all_commands
from taskgraph_mcp.config import BACKENDS


@click.group()
@click.option(
    "--tasks-file",
    envvar="TASKGRAPH_TASKS_FILE",
    type=click.Path(exists=False),
    help="Override the local tasks.json path",
)
@click.option(
    "--backend",
    type=click.Choice(BACKENDS, case_sensitive=False),
    default=None,
    help="Task store backend (defaults to configuration)",
)
@click.option(
    "--parent-key",
    envvar="JIRA_PARENT_KEY",
    default=None,
    help="Restrict the tracker backend to one parent issue",
)
@click.pass_context
def cli(
    ctx: click.Context,
    tasks_file: Optional[str],
    backend: Optional[str],
    parent_key: Optional[str],
) -> None:
    """taskgraph - validate, repair and schedule task dependencies.

    All commands output JSON for reliable parsing by AI coding tools.
    """
    ctx.ensure_object(dict)
    ctx.obj["cli_context"] = create_context(
        tasks_file=tasks_file, backend=backend, parent_key=parent_key
    )


# Register all command groups
register_all_commands(cli)


if __name__ == "__main__":
    cli()
