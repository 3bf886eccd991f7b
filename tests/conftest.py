"""
Root pytest configuration and shared fixtures.

Provides response-envelope helpers, tasks-file fixtures and a server
configuration pointed at a temporary workspace.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, Union

import pytest
from mcp.types import TextContent

from taskgraph_mcp.config import ServerConfig, TrackerConfig, set_config
from tests.fixtures.task_stores import sample_document, valid_document

# Response contract version from responses.py
RESPONSE_CONTRACT_VERSION = "response-v2"


def extract_response_dict(result: Union[Dict[str, Any], TextContent]) -> Dict[str, Any]:
    """Extract dict from tool result, handling both dict and TextContent.

    Tools wrapped with the canonical_tool decorator return TextContent with
    minified JSON; handlers called directly return plain dicts.
    """
    if isinstance(result, dict):
        return result
    if isinstance(result, TextContent):
        return json.loads(result.text)
    raise TypeError(f"Expected dict or TextContent, got {type(result).__name__}")


def validate_response_envelope(response: Dict[str, Any]) -> bool:
    """Assert that a response dict conforms to the response-v2 envelope."""
    required_keys = {"success", "data", "error", "meta"}
    missing = required_keys - set(response.keys())
    assert not missing, f"Response missing required keys: {missing}"

    assert isinstance(response["success"], bool), "success must be boolean"
    assert isinstance(response["data"], dict), "data must be dict"
    assert isinstance(response["meta"], dict), "meta must be dict"

    if response["success"]:
        assert response["error"] is None, "error must be null when success=True"
    else:
        assert isinstance(response["error"], str) and response["error"], (
            "error must be non-empty string when success=False"
        )

    assert response["meta"].get("version") == RESPONSE_CONTRACT_VERSION, (
        f"meta.version must be '{RESPONSE_CONTRACT_VERSION}'"
    )
    return True


@pytest.fixture
def write_tasks_file(tmp_path: Path) -> Callable[[Dict[str, Any]], Path]:
    """Factory writing a tasks document to ``tmp_path/tasks/tasks.json``."""

    def _write(document: Dict[str, Any], name: str = "tasks.json") -> Path:
        tasks_dir = tmp_path / "tasks"
        tasks_dir.mkdir(exist_ok=True)
        path = tasks_dir / name
        path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_tasks_file(write_tasks_file) -> Path:
    """Tasks file containing one self, one missing and one circular defect."""
    return write_tasks_file(sample_document())


@pytest.fixture
def valid_tasks_file(write_tasks_file) -> Path:
    """Tasks file with a clean dependency graph."""
    return write_tasks_file(valid_document())


@pytest.fixture
def test_config(sample_tasks_file: Path) -> ServerConfig:
    return ServerConfig(
        tasks_file=sample_tasks_file,
        backend="local",
        lock_timeout=2.0,
        tracker=TrackerConfig(),
        log_level="WARNING",
        server_name="taskgraph-mcp-test",
        server_version="0.1.0",
    )


@pytest.fixture(autouse=True)
def _isolate_global_config(monkeypatch):
    """Keep tests independent of the developer's environment and config."""
    for name in (
        "TASKGRAPH_MCP_CONFIG_FILE",
        "TASKGRAPH_MCP_TASKS_FILE",
        "TASKGRAPH_MCP_BACKEND",
        "TASKGRAPH_MCP_LOCK_TIMEOUT",
        "TASKGRAPH_MCP_LOG_LEVEL",
        "TASKGRAPH_MCP_STRUCTURED_LOGGING",
        "TASKGRAPH_TASKS_FILE",
        "JIRA_API_URL",
        "JIRA_EMAIL",
        "JIRA_API_TOKEN",
        "JIRA_PROJECT",
        "JIRA_PARENT_KEY",
        "JIRA_LINK_TYPE",
    ):
        monkeypatch.delenv(name, raising=False)
    set_config(None)
    yield
    set_config(None)
