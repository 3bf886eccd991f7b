"""Tests for ServerConfig loading from TOML and environment variables."""

import logging
from pathlib import Path

import pytest

from taskgraph_mcp.config import ServerConfig, TrackerConfig, get_config, set_config

TOML = """
[workspace]
tasks_file = "work/tasks.json"

[store]
backend = "tracker"
lock_timeout = 3.5

[tracker]
base_url = "https://example.atlassian.net"
email = "dev@example.com"
api_token = "toml-token"
project = "PROJ"
link_type = "Depends"
page_size = 25

[logging]
level = "debug"
structured = false

[server]
name = "graph-server"
"""


@pytest.fixture
def toml_file(tmp_path: Path) -> Path:
    path = tmp_path / "taskgraph-mcp.toml"
    path.write_text(TOML, encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        config = ServerConfig.from_env()
        assert config.tasks_file == Path("tasks") / "tasks.json"
        assert config.backend == "local"
        assert config.log_level == "INFO"
        assert config.tracker.link_type == "Blocks"
        assert config.tracker.is_configured is False


class TestToml:
    def test_loads_all_sections(self, toml_file):
        config = ServerConfig.from_env(str(toml_file))
        assert config.tasks_file == Path("work/tasks.json")
        assert config.backend == "tracker"
        assert config.lock_timeout == 3.5
        assert config.tracker.project == "PROJ"
        assert config.tracker.link_type == "Depends"
        assert config.tracker.page_size == 25
        assert config.tracker.is_configured is True
        assert config.log_level == "DEBUG"
        assert config.structured_logging is False
        assert config.server_name == "graph-server"

    def test_default_file_in_working_directory(self, toml_file, monkeypatch):
        monkeypatch.chdir(toml_file.parent)
        assert ServerConfig.from_env().backend == "tracker"

    def test_config_file_env_var(self, toml_file, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TASKGRAPH_MCP_CONFIG_FILE", str(toml_file))
        assert ServerConfig.from_env().server_name == "graph-server"

    def test_missing_file_keeps_defaults(self, tmp_path, caplog):
        config = ServerConfig.from_env(str(tmp_path / "absent.toml"))
        assert config.backend == "local"
        assert "Config file not found" in caplog.text

    def test_invalid_toml_keeps_defaults(self, tmp_path, caplog):
        path = tmp_path / "bad.toml"
        path.write_text("[store\nbackend = ", encoding="utf-8")
        config = ServerConfig.from_env(str(path))
        assert config.backend == "local"
        assert "Error loading config file" in caplog.text


class TestEnvironment:
    def test_env_overrides_toml(self, toml_file, monkeypatch):
        monkeypatch.setenv("TASKGRAPH_MCP_BACKEND", "local")
        monkeypatch.setenv("TASKGRAPH_MCP_TASKS_FILE", "/data/tasks.json")
        monkeypatch.setenv("TASKGRAPH_MCP_LOG_LEVEL", "warning")
        monkeypatch.setenv("JIRA_API_TOKEN", "env-token")
        monkeypatch.setenv("JIRA_PARENT_KEY", "PROJ-7")

        config = ServerConfig.from_env(str(toml_file))

        assert config.backend == "local"
        assert config.tasks_file == Path("/data/tasks.json")
        assert config.log_level == "WARNING"
        assert config.tracker.api_token == "env-token"
        assert config.tracker.parent_key == "PROJ-7"

    def test_invalid_lock_timeout_is_ignored(self, monkeypatch, tmp_path, caplog):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TASKGRAPH_MCP_LOCK_TIMEOUT", "soon")
        assert ServerConfig.from_env().lock_timeout == 10.0
        assert "Ignoring invalid TASKGRAPH_MCP_LOCK_TIMEOUT" in caplog.text

    def test_unknown_backend_falls_back_to_local(self, monkeypatch, tmp_path, caplog):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TASKGRAPH_MCP_BACKEND", "Notion")
        with caplog.at_level(logging.WARNING):
            assert ServerConfig.from_env().backend == "local"
        assert "Unknown task store backend 'Notion'" in caplog.text

    def test_backend_is_case_insensitive(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TASKGRAPH_MCP_BACKEND", "TRACKER")
        assert ServerConfig.from_env().backend == "tracker"


class TestTrackerConfig:
    def test_missing_fields_use_env_names(self):
        config = TrackerConfig(base_url="https://x", email="e")
        assert config.missing_fields() == ["JIRA_API_TOKEN", "JIRA_PROJECT"]

    def test_from_toml_dict_defaults(self):
        config = TrackerConfig.from_toml_dict({"project": "PROJ"})
        assert config.timeout == 30.0
        assert config.parent_key is None


def test_global_config_is_cached(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    first = get_config()
    assert get_config() is first
    replacement = ServerConfig(backend="tracker")
    set_config(replacement)
    assert get_config() is replacement
