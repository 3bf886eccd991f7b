"""Tests for the unified dependency router.

Covers dispatch, every action handler, edit rejections and store failures,
checking the response-v2 envelope each time.
"""

import json

import pytest

from taskgraph_mcp.tools.unified.dependency import _dispatch_dependency_action
from tests.conftest import validate_response_envelope


def _payload(**overrides):
    payload = {"task_id": None, "depends_on": None, "tasks_file": None, "parent_key": None}
    payload.update(overrides)
    return payload


def _run(config, action, **overrides):
    result = _dispatch_dependency_action(
        action=action, payload=_payload(**overrides), config=config
    )
    validate_response_envelope(result)
    return result


class TestDispatch:
    def test_unknown_action(self, test_config):
        result = _run(test_config, "explode")
        assert result["success"] is False
        assert result["data"]["error_code"] == "VALIDATION_ERROR"
        assert result["error"] == (
            "Unsupported dependency action 'explode'. "
            "Allowed actions: validate, fix, add, remove, status"
        )

    def test_alias(self, test_config):
        assert _run(test_config, "check")["data"]["valid"] is False

    def test_unexpected_error_is_sanitized(self, test_config, monkeypatch):
        def broken_store(config, payload):
            raise RuntimeError("secret-token leaked in /home/dev/tasks.json")

        monkeypatch.setattr(
            "taskgraph_mcp.tools.unified.dependency.open_store", broken_store
        )
        result = _run(test_config, "validate")
        assert result["success"] is False
        assert result["data"]["error_code"] == "INTERNAL_ERROR"
        assert result["error"] == "An internal error occurred"
        assert "secret-token" not in json.dumps(result)


class TestValidate:
    def test_reports_violations(self, test_config):
        result = _run(test_config, "validate")
        assert result["success"] is True
        data = result["data"]
        assert data["backend"] == "local"
        assert data["valid"] is False
        assert [(i["type"], i["taskId"], i["dependencyId"]) for i in data["issues"]] == [
            ("self", 2, 2),
            ("missing", 3, 99),
            ("circular", 5, 4),
        ]
        assert data["stats"] == {
            "totalTasks": 8,
            "withDependencies": 6,
            "invalidDependencies": 3,
        }
        assert result["meta"]["warnings"] == ["3 invalid dependencies found"]
        assert "duration_ms" in result["meta"]["telemetry"]

    def test_per_call_tasks_file(self, test_config, valid_tasks_file):
        result = _run(test_config, "validate", tasks_file=str(valid_tasks_file))
        assert result["data"]["valid"] is True

    def test_missing_file(self, test_config, tmp_path):
        result = _run(test_config, "validate", tasks_file=str(tmp_path / "gone.json"))
        assert result["success"] is False
        assert result["data"]["error_code"] == "STORE_UNAVAILABLE"

    def test_unreadable_file(self, test_config, write_tasks_file):
        path = write_tasks_file({}, name="broken.json")
        path.write_text("[not json", encoding="utf-8")
        result = _run(test_config, "validate", tasks_file=str(path))
        assert result["data"]["error_code"] == "TASKS_READ_ERROR"


class TestFix:
    def test_repairs_and_reports(self, test_config, sample_tasks_file):
        result = _run(test_config, "fix")
        assert result["success"] is True
        assert result["data"]["stats"]["selfDepsRemoved"] == 1
        assert result["data"]["stats"]["missingDepsRemoved"] == 1
        assert result["data"]["stats"]["circularDepsRemoved"] == 1
        assert result["data"]["failures"] == []
        assert "warnings" not in result["meta"]

        document = json.loads(sample_tasks_file.read_text())
        assert document["project"] == "demo"

        again = _run(test_config, "repair")
        assert again["data"]["stats"]["totalRemoved"] == 0
        assert again["data"]["message"] == "All dependencies are already valid, nothing to fix"

    def test_unfixable_edges_become_warnings(self, test_config, monkeypatch):
        from taskgraph_mcp.core.stores.local import LocalTaskStore

        original = LocalTaskStore.remove_dependency_edge

        def flaky(self, task_id, dependency_id):
            if str(dependency_id) == "99":
                return False, "file is read-only"
            return original(self, task_id, dependency_id)

        monkeypatch.setattr(LocalTaskStore, "remove_dependency_edge", flaky)
        result = _run(test_config, "fix")

        assert result["success"] is True
        assert result["data"]["stats"]["unfixable"] == 1
        assert result["data"]["failures"][0]["reason"] == "file is read-only"
        assert result["meta"]["warnings"] == ["3 -> 99: file is read-only"]

    def test_unconfigured_tracker(self, test_config):
        test_config.backend = "tracker"
        result = _run(test_config, "fix")
        assert result["success"] is False
        assert result["data"]["error_code"] == "STORE_UNAVAILABLE"
        assert result["data"]["backend"] == "tracker"


class TestEdits:
    def test_add_and_remove(self, test_config, valid_tasks_file):
        added = _run(
            test_config, "add", task_id="4", depends_on=3, tasks_file=str(valid_tasks_file)
        )
        assert added["success"] is True
        assert added["data"]["action"] == "added"
        assert json.loads(valid_tasks_file.read_text())["tasks"][3]["dependencies"] == [1, 3]

        removed = _run(
            test_config, "remove", task_id=4, depends_on="3", tasks_file=str(valid_tasks_file)
        )
        assert removed["data"]["action"] == "removed"
        assert json.loads(valid_tasks_file.read_text())["tasks"][3]["dependencies"] == [1]

    def test_missing_task_id(self, test_config):
        result = _run(test_config, "add", depends_on=1)
        assert result["data"]["error_code"] == "MISSING_REQUIRED"
        assert result["error"] == (
            "Invalid field 'task_id' for dependency.add: Provide a task identifier"
        )

    def test_invalid_task_id(self, test_config):
        result = _run(test_config, "add", task_id=-1, depends_on=1)
        assert result["data"]["error_code"] == "INVALID_FORMAT"
        assert result["data"]["details"] == {"field": "task_id", "action": "dependency.add"}

    @pytest.mark.parametrize(
        "task_id, depends_on, code",
        [
            (1, 1, "SELF_REFERENCE"),
            (1, 42, "NOT_FOUND"),
            (2, 1, "DUPLICATE_ENTRY"),
            (1, 3, "CIRCULAR_DEPENDENCY"),
        ],
    )
    def test_add_rejections(self, test_config, valid_tasks_file, task_id, depends_on, code):
        before = valid_tasks_file.read_text()
        result = _run(
            test_config,
            "add",
            task_id=task_id,
            depends_on=depends_on,
            tasks_file=str(valid_tasks_file),
        )
        assert result["success"] is False
        assert result["data"]["error_code"] == code
        assert valid_tasks_file.read_text() == before

    def test_cycle_rejection_carries_path(self, test_config, valid_tasks_file):
        result = _run(
            test_config, "add", task_id=1, depends_on=3, tasks_file=str(valid_tasks_file)
        )
        assert result["data"]["cycle_path"] == ["3", "2", "1", "3"]
        assert result["data"]["error_type"] == "conflict"

    def test_remove_missing_edge(self, test_config, valid_tasks_file):
        result = _run(
            test_config, "remove", task_id=2, depends_on=3, tasks_file=str(valid_tasks_file)
        )
        assert result["data"]["error_code"] == "DEPENDENCY_NOT_FOUND"


class TestStatus:
    def test_subtask_status(self, test_config):
        result = _run(test_config, "status", task_id="6.2")
        assert result["success"] is True
        assert result["data"]["task_id"] == "6.2"
        assert result["data"]["can_start"] is True
        assert result["data"]["satisfied"] == [
            {"id": "6.1", "title": "First step", "status": "done"}
        ]

    def test_unknown_task(self, test_config):
        result = _run(test_config, "status", task_id="PROJ-1")
        assert result["data"]["error_code"] == "NOT_FOUND"
