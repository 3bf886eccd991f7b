"""Unified action-based MCP tools."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .dependency import register_unified_dependency_tool
from .task import register_unified_task_tool


if TYPE_CHECKING:  # pragma: no cover - import-time typing only
    from mcp.server.fastmcp import FastMCP
    from taskgraph_mcp.config import ServerConfig


def register_unified_tools(mcp: "FastMCP", config: "ServerConfig") -> None:
    """Register all unified tool routers."""
    register_unified_dependency_tool(mcp, config)
    register_unified_task_tool(mcp, config)


__all__ = [
    "register_unified_tools",
    "register_unified_dependency_tool",
    "register_unified_task_tool",
]
