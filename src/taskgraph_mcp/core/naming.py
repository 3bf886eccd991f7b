"""Naming helpers for MCP tool registration."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import time
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from taskgraph_mcp.core.observability import mcp_tool

logger = logging.getLogger(__name__)


def _minify_response(result: dict[str, Any]) -> TextContent:
    """Serialize a response envelope to compact JSON text content."""
    return TextContent(
        type="text",
        text=json.dumps(result, separators=(",", ":"), default=str),
    )


def canonical_tool(
    mcp: FastMCP,
    *,
    canonical_name: str,
    **tool_kwargs: Any,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator that registers a tool under its canonical name.

    The wrapped tool:
    1. Is registered with FastMCP under ``canonical_name``
    2. Is instrumented via ``mcp_tool`` (metrics, audit, request context)
    3. Returns dict envelopes as minified JSON ``TextContent``

    Args:
        mcp: FastMCP instance
        canonical_name: The canonical name for the tool
        **tool_kwargs: Additional kwargs passed to mcp.tool()
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception:
                    _log_tool_error(canonical_name, start_time)
                    raise
                if isinstance(result, dict):
                    return _minify_response(result)
                return result

            wrapper = async_wrapper
        else:

            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                try:
                    result = func(*args, **kwargs)
                except Exception:
                    _log_tool_error(canonical_name, start_time)
                    raise
                if isinstance(result, dict):
                    return _minify_response(result)
                return result

            wrapper = sync_wrapper

        instrumented = mcp_tool(tool_name=canonical_name)(wrapper)
        return mcp.tool(name=canonical_name, **tool_kwargs)(instrumented)

    return decorator


def _log_tool_error(tool_name: str, start_time: float) -> None:
    duration_ms = (time.perf_counter() - start_time) * 1000
    logger.exception(
        f"Tool {tool_name} raised after {duration_ms:.1f}ms",
        extra={"tool": tool_name, "duration_ms": round(duration_ms, 2)},
    )
