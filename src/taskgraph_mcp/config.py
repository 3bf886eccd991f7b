"""
Server configuration for taskgraph-mcp.

Supports configuration via:
1. Environment variables (highest priority)
2. TOML config file (taskgraph-mcp.toml)
3. Default values (lowest priority)

Environment variables:
- TASKGRAPH_MCP_CONFIG_FILE: Path to TOML config file
- TASKGRAPH_MCP_TASKS_FILE: Path to the local tasks.json
- TASKGRAPH_MCP_BACKEND: Task store backend ("local" or "tracker")
- TASKGRAPH_MCP_LOCK_TIMEOUT: Seconds to wait for the tasks file lock
- TASKGRAPH_MCP_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
- TASKGRAPH_MCP_STRUCTURED_LOGGING: JSON log lines (true/false)

Tracker connection (Jira Cloud):
- JIRA_API_URL: Site base URL, e.g. https://example.atlassian.net
- JIRA_EMAIL: Account email used for basic auth
- JIRA_API_TOKEN: API token used for basic auth
- JIRA_PROJECT: Project key, e.g. PROJ
- JIRA_PARENT_KEY: Optional parent issue restricting the task collection
- JIRA_LINK_TYPE: Issue link type modelling dependencies (default: Blocks)
"""

import logging
import os
from dataclasses import dataclass, field
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_package_version
from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python < 3.11 fallback


logger = logging.getLogger(__name__)

BACKENDS = ("local", "tracker")
DEFAULT_TASKS_FILE = Path("tasks") / "tasks.json"


def _get_version() -> str:
    """Get package version from metadata (single source of truth: pyproject.toml)."""
    try:
        return get_package_version("taskgraph-mcp")
    except PackageNotFoundError:
        return "0.1.0"


_PACKAGE_VERSION = _get_version()


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


@dataclass
class TrackerConfig:
    """Connection settings for the remote issue tracker.

    Attributes:
        base_url: Site base URL
        email: Account email for basic auth
        api_token: API token for basic auth
        project: Project key whose issues form the task collection
        parent_key: Restrict the collection to one parent issue and its children
        link_type: Issue link type that models a dependency
        timeout: Per-request timeout in seconds
        page_size: Issues fetched per search page
    """

    base_url: str = ""
    email: str = ""
    api_token: str = ""
    project: str = ""
    parent_key: Optional[str] = None
    link_type: str = "Blocks"
    timeout: float = 30.0
    page_size: int = 100

    @classmethod
    def from_toml_dict(cls, data: Dict[str, Any]) -> "TrackerConfig":
        """Create config from the ``[tracker]`` TOML section."""
        return cls(
            base_url=str(data.get("base_url", "")),
            email=str(data.get("email", "")),
            api_token=str(data.get("api_token", "")),
            project=str(data.get("project", "")),
            parent_key=data.get("parent_key") or None,
            link_type=str(data.get("link_type", "Blocks")),
            timeout=float(data.get("timeout", 30.0)),
            page_size=int(data.get("page_size", 100)),
        )

    def missing_fields(self) -> List[str]:
        """Names of required settings that are empty, as env var names."""
        required = {
            "JIRA_API_URL": self.base_url,
            "JIRA_EMAIL": self.email,
            "JIRA_API_TOKEN": self.api_token,
            "JIRA_PROJECT": self.project,
        }
        return [name for name, value in required.items() if not value]

    @property
    def is_configured(self) -> bool:
        return not self.missing_fields()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "email": self.email,
            "api_token": self.api_token,
            "project": self.project,
            "parent_key": self.parent_key,
            "link_type": self.link_type,
            "timeout": self.timeout,
            "page_size": self.page_size,
        }


@dataclass
class ServerConfig:
    """Server configuration with support for env vars and TOML overrides."""

    # Task store
    tasks_file: Path = field(default_factory=lambda: DEFAULT_TASKS_FILE)
    backend: str = "local"
    lock_timeout: float = 10.0
    tracker: TrackerConfig = field(default_factory=TrackerConfig)

    # Logging configuration
    log_level: str = "INFO"
    structured_logging: bool = True

    # Server configuration
    server_name: str = "taskgraph-mcp"
    server_version: str = field(default_factory=lambda: _PACKAGE_VERSION)

    @classmethod
    def from_env(cls, config_file: Optional[str] = None) -> "ServerConfig":
        """
        Create configuration from environment variables and optional TOML file.

        Priority (highest to lowest):
        1. Environment variables
        2. TOML config file
        3. Default values
        """
        config = cls()

        toml_path = config_file or os.environ.get("TASKGRAPH_MCP_CONFIG_FILE")
        if toml_path:
            config._load_toml(Path(toml_path))
        else:
            for default_path in ["taskgraph-mcp.toml", ".taskgraph-mcp.toml"]:
                if Path(default_path).exists():
                    config._load_toml(Path(default_path))
                    break

        config._load_env()
        config.backend = _normalize_backend(config.backend)
        return config

    def _load_toml(self, path: Path) -> None:
        """Load configuration from TOML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}")
            return

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
            return

        if "workspace" in data:
            ws = data["workspace"]
            if "tasks_file" in ws:
                self.tasks_file = Path(ws["tasks_file"])

        if "store" in data:
            store = data["store"]
            if "backend" in store:
                self.backend = str(store["backend"])
            if "lock_timeout" in store:
                self.lock_timeout = float(store["lock_timeout"])

        if "tracker" in data:
            self.tracker = TrackerConfig.from_toml_dict(data["tracker"])

        if "logging" in data:
            log = data["logging"]
            if "level" in log:
                self.log_level = str(log["level"]).upper()
            if "structured" in log:
                self.structured_logging = _parse_bool(log["structured"])

        if "server" in data:
            srv = data["server"]
            if "name" in srv:
                self.server_name = srv["name"]
            if "version" in srv:
                self.server_version = srv["version"]

    def _load_env(self) -> None:
        """Load configuration from environment variables."""
        if tasks_file := os.environ.get("TASKGRAPH_MCP_TASKS_FILE"):
            self.tasks_file = Path(tasks_file)

        if backend := os.environ.get("TASKGRAPH_MCP_BACKEND"):
            self.backend = backend

        if lock_timeout := os.environ.get("TASKGRAPH_MCP_LOCK_TIMEOUT"):
            try:
                self.lock_timeout = float(lock_timeout)
            except ValueError:
                logger.warning(f"Ignoring invalid TASKGRAPH_MCP_LOCK_TIMEOUT: {lock_timeout}")

        if level := os.environ.get("TASKGRAPH_MCP_LOG_LEVEL"):
            self.log_level = level.upper()

        if structured := os.environ.get("TASKGRAPH_MCP_STRUCTURED_LOGGING"):
            self.structured_logging = _parse_bool(structured)

        # Tracker settings
        if base_url := os.environ.get("JIRA_API_URL"):
            self.tracker.base_url = base_url
        if email := os.environ.get("JIRA_EMAIL"):
            self.tracker.email = email
        if api_token := os.environ.get("JIRA_API_TOKEN"):
            self.tracker.api_token = api_token
        if project := os.environ.get("JIRA_PROJECT"):
            self.tracker.project = project
        if parent_key := os.environ.get("JIRA_PARENT_KEY"):
            self.tracker.parent_key = parent_key
        if link_type := os.environ.get("JIRA_LINK_TYPE"):
            self.tracker.link_type = link_type

    def setup_logging(self) -> None:
        """Configure the taskgraph_mcp logger from these settings."""
        from taskgraph_mcp.core.logging_config import configure_logging

        configure_logging(
            level=getattr(logging, self.log_level, logging.INFO),
            format="structured" if self.structured_logging else "human",
        )


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in BACKENDS:
        logger.warning(f"Unknown task store backend '{value}', falling back to 'local'")
        return "local"
    return normalized


# Global configuration instance
_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ServerConfig.from_env()
    return _config


def set_config(config: ServerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
