"""CLI configuration and task store selection.

Resolves the effective task store for a command from the shared
``taskgraph_mcp.config`` settings plus command-line overrides.
"""

from pathlib import Path
from typing import Optional

from taskgraph_mcp.config import ServerConfig, get_config as get_server_config
from taskgraph_mcp.core.stores import TaskStore, create_task_store


class CLIContext:
    """CLI execution context with resolved configuration.

    Holds the effective configuration for a CLI command, including
    any overrides from command-line options.
    """

    def __init__(
        self,
        tasks_file: Optional[str] = None,
        backend: Optional[str] = None,
        parent_key: Optional[str] = None,
        server_config: Optional[ServerConfig] = None,
    ):
        """Initialize CLI context.

        Args:
            tasks_file: Explicit tasks file override from --tasks-file.
            backend: Explicit backend override from --backend.
            parent_key: Tracker parent issue override from --parent-key.
            server_config: Optional server config (uses global if not provided).
        """
        self._tasks_file_override = tasks_file
        self._backend_override = backend
        self.parent_key = parent_key
        self._config = server_config or get_server_config()

    @property
    def tasks_file(self) -> Path:
        """The local tasks file: --tasks-file first, then configuration."""
        if self._tasks_file_override:
            return Path(self._tasks_file_override)
        return self._config.tasks_file

    @property
    def backend(self) -> str:
        return (self._backend_override or self._config.backend).lower()

    @property
    def config(self) -> ServerConfig:
        """Get the underlying server configuration."""
        return self._config

    def open_store(self) -> TaskStore:
        """Build the task store this command should use."""
        return create_task_store(
            self._config,
            tasks_file=self.tasks_file,
            parent_key=self.parent_key,
            backend=self.backend,
        )


def create_context(
    tasks_file: Optional[str] = None,
    backend: Optional[str] = None,
    parent_key: Optional[str] = None,
) -> CLIContext:
    """Create a CLI context with optional overrides."""
    return CLIContext(tasks_file=tasks_file, backend=backend, parent_key=parent_key)
