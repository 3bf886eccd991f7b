"""taskgraph CLI module entry point.

Enables running the CLI via: python -m taskgraph_mcp.cli
"""

from taskgraph_mcp.cli.main import cli

if __name__ == "__main__":
    cli()
