"""Tests for single-task lookup and status changes."""

import logging

import pytest

from taskgraph_mcp.core.models import (
    ExternalKey,
    NumericId,
    SubtaskAddress,
    Task,
    TaskNotFoundError,
    TaskStatus,
)
from taskgraph_mcp.core.stores.base import StoreUnavailableError, TaskStoreWriteError
from taskgraph_mcp.core.tasks import get_task_details, set_task_status, subtasks_of
from tests.fixtures.task_stores import InMemoryTaskStore, make_task

AUDIT_LOGGER = "taskgraph_mcp.core.observability.audit"


def _parent_with_subtasks() -> Task:
    return Task.from_dict(
        {
            "id": 6,
            "title": "Parent",
            "status": "in-progress",
            "subtasks": [
                {"id": 1, "title": "First", "status": "done"},
                {"id": 2, "title": "Second", "status": "pending", "dependencies": [1]},
                {"id": 3, "title": "Third", "status": "blocked"},
            ],
        }
    )


def _status_of(store, task_id):
    return next(task.status for task in store.tasks if task.id == task_id)


class TestSubtasksOf:
    def test_nested_subtasks(self):
        subs = subtasks_of([_parent_with_subtasks()], NumericId(6))
        assert [sub.id for sub in subs] == [
            SubtaskAddress(6, 1),
            SubtaskAddress(6, 2),
            SubtaskAddress(6, 3),
        ]

    def test_flat_records_naming_a_parent(self):
        parent = Task(id=ExternalKey("PROJ-1"), title="Epic")
        child = Task(id=ExternalKey("PROJ-2"), title="Story", parent_id=ExternalKey("PROJ-1"))
        other = Task(id=ExternalKey("PROJ-3"), title="Loose")
        assert subtasks_of([parent, child, other], ExternalKey("PROJ-1")) == [child]

    def test_leaf_task_has_none(self):
        assert subtasks_of([make_task(1)], NumericId(1)) == []


class TestGetTaskDetails:
    def test_includes_subtasks_and_dependency_standing(self):
        tasks = [make_task(1, status="done"), make_task(2, 1), make_task(3, 2)]
        details = get_task_details(tasks, NumericId(2)).to_dict()

        assert details["task"]["id"] == 2
        assert details["subtasks"] == []
        assert details["subtask_count"] == 0
        assert details["can_start"] is True
        assert details["blocked_by"] == []
        assert [dep["id"] for dep in details["satisfied"]] == [1]
        assert [dep["id"] for dep in details["blocks"]] == [3]

    def test_parent_lists_its_subtasks(self):
        details = get_task_details([_parent_with_subtasks()], NumericId(6)).to_dict()
        assert details["subtask_count"] == 3
        assert [sub["id"] for sub in details["subtasks"]] == ["6.1", "6.2", "6.3"]

    def test_subtask_address_can_be_shown(self):
        details = get_task_details([_parent_with_subtasks()], SubtaskAddress(6, 2))
        assert details.task.title == "Second"
        assert details.to_dict()["satisfied"][0]["id"] == "6.1"

    def test_unknown_task_raises(self):
        with pytest.raises(TaskNotFoundError):
            get_task_details([make_task(1)], NumericId(9))


class TestSetTaskStatus:
    def test_updates_one_task(self):
        store = InMemoryTaskStore([make_task(1), make_task(2, 1)])
        change = set_task_status(store, NumericId(1), TaskStatus.IN_PROGRESS)

        assert change.to_dict() == {
            "task_id": 1,
            "previous_status": "pending",
            "status": "in-progress",
            "subtasks_updated": [],
            "failures": [],
        }
        assert store.status_changes == [(NumericId(1), TaskStatus.IN_PROGRESS)]

    def test_completing_parent_completes_unfinished_subtasks(self):
        store = InMemoryTaskStore([_parent_with_subtasks()])
        change = set_task_status(store, NumericId(6), TaskStatus.DONE)

        assert change.subtasks_updated == [SubtaskAddress(6, 2), SubtaskAddress(6, 3)]
        assert _status_of(store, SubtaskAddress(6, 2)) is TaskStatus.DONE
        assert _status_of(store, SubtaskAddress(6, 3)) is TaskStatus.DONE
        # already done, so not touched again
        assert (SubtaskAddress(6, 1), TaskStatus.DONE) not in store.status_changes

    def test_other_statuses_do_not_cascade(self):
        store = InMemoryTaskStore([_parent_with_subtasks()])
        change = set_task_status(store, NumericId(6), TaskStatus.DEFERRED)
        assert change.subtasks_updated == []
        assert store.status_changes == [(NumericId(6), TaskStatus.DEFERRED)]

    def test_subtask_failure_is_recorded_and_parent_kept(self, caplog):
        store = InMemoryTaskStore([_parent_with_subtasks()])
        store.fail_status.add(SubtaskAddress(6, 3))

        change = set_task_status(store, NumericId(6), TaskStatus.COMPLETED)

        assert _status_of(store, NumericId(6)) is TaskStatus.COMPLETED
        assert change.subtasks_updated == [SubtaskAddress(6, 2)]
        assert change.to_dict()["failures"] == [
            {"task_id": "6.3", "reason": "refused to update 6.3"}
        ]
        assert "Could not update subtask 6.3" in caplog.text

    def test_unknown_task_raises_before_writing(self):
        store = InMemoryTaskStore([make_task(1)])
        with pytest.raises(TaskNotFoundError):
            set_task_status(store, NumericId(7), TaskStatus.DONE)
        assert store.status_changes == []

    def test_refused_update_is_write_error(self):
        store = InMemoryTaskStore([make_task(1)])
        store.fail_status.add(NumericId(1))
        with pytest.raises(TaskStoreWriteError, match="refused to update 1"):
            set_task_status(store, NumericId(1), TaskStatus.DONE)

    def test_unavailable_store_raises(self):
        store = InMemoryTaskStore([make_task(1)], available=False)
        with pytest.raises(StoreUnavailableError):
            set_task_status(store, NumericId(1), TaskStatus.DONE)
        assert store.list_calls == 0

    def test_change_is_audited(self, caplog):
        caplog.set_level(logging.INFO, logger=AUDIT_LOGGER)
        store = InMemoryTaskStore([make_task(1)])
        set_task_status(store, NumericId(1), TaskStatus.REVIEW)

        audit = [r for r in caplog.records if r.name == AUDIT_LOGGER][-1].audit
        assert audit["event_type"] == "status_changed"
        assert audit["details"]["task_id"] == "1"
        assert audit["details"]["previous"] == "pending"
        assert audit["details"]["status"] == "review"
        assert audit["details"]["backend"] == "memory"
