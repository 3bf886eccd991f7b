"""MCP resources for taskgraph-mcp."""

from taskgraph_mcp.resources.tasks import register_task_resources

__all__ = ["register_task_resources"]
