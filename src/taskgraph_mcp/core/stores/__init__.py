"""Task store backends and the factory that picks one from configuration."""

from pathlib import Path
from typing import Optional, Union

from taskgraph_mcp.config import ServerConfig
from taskgraph_mcp.core.stores.base import (
    EdgeResult,
    StoreUnavailableError,
    TaskStore,
    TaskStoreError,
    TaskStoreReadError,
    TaskStoreWriteError,
)
from taskgraph_mcp.core.stores.local import LocalTaskStore
from taskgraph_mcp.core.stores.tracker import TrackerTaskStore


def create_task_store(
    config: ServerConfig,
    *,
    tasks_file: Optional[Union[str, Path]] = None,
    parent_key: Optional[str] = None,
    backend: Optional[str] = None,
) -> TaskStore:
    """Build the store selected by ``config.backend`` (or ``backend``).

    Args:
        config: Server configuration
        tasks_file: Override the local tasks file path
        parent_key: Restrict the tracker collection to one parent issue
        backend: Override the configured backend name
    """
    name = (backend or config.backend or "local").lower()
    if name == "tracker":
        return TrackerTaskStore(config.tracker, parent_key=parent_key)
    if name != "local":
        raise ValueError(f"Unknown task store backend: {name}")
    return LocalTaskStore(
        tasks_file or config.tasks_file,
        lock_timeout=config.lock_timeout,
    )


__all__ = [
    "EdgeResult",
    "LocalTaskStore",
    "StoreUnavailableError",
    "TaskStore",
    "TaskStoreError",
    "TaskStoreReadError",
    "TaskStoreWriteError",
    "TrackerTaskStore",
    "create_task_store",
]
