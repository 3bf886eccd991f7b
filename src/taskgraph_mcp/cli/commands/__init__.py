"""CLI command groups.

The CLI is organized into domain groups: ``deps`` for the dependency graph
and ``tasks`` for selection and listing.
"""

from taskgraph_mcp.cli.commands.deps import deps
from taskgraph_mcp.cli.commands.tasks import tasks

__all__ = [
    "deps",
    "tasks",
]
