"""taskgraph-mcp - dependency graph validation, repair and next-task selection."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("taskgraph-mcp")
except PackageNotFoundError:
    # Package not installed (development mode without editable install)
    __version__ = "0.1.0"

from taskgraph_mcp.server import create_server, main

__all__ = ["__version__", "create_server", "main"]
