"""MCP tool registration surface.

Only the unified ``dependency`` and ``task`` routers are exported.
"""

from taskgraph_mcp.tools.unified import register_unified_tools

__all__ = [
    "register_unified_tools",
]
