"""Task store backed by a local ``tasks.json`` file.

File shape::

    {"tasks": [{"id": 1, "title": "...", "status": "pending",
                "priority": "high", "dependencies": [2, "3.1"],
                "subtasks": [{"id": 1, "dependencies": [2], ...}]}]}

Keys other than ``tasks`` are preserved when the file is rewritten. Every
mutation holds a sidecar ``FileLock`` for its read-modify-write and replaces
the file atomically.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from filelock import FileLock, Timeout

from taskgraph_mcp.core.models import (
    NumericId,
    SubtaskAddress,
    Task,
    TaskId,
    TaskStatus,
    dependency_entries,
    resolve_subtask_dependency,
    subtask_records,
    try_parse_task_id,
)
from taskgraph_mcp.core.stores.base import (
    EdgeResult,
    StoreUnavailableError,
    TaskStore,
    TaskStoreReadError,
)

logger = logging.getLogger(__name__)

DEFAULT_TASKS_FILE = Path("tasks") / "tasks.json"
DEFAULT_LOCK_TIMEOUT = 10.0

# (record, resolver for its dependency entries)
_Located = Tuple[Dict[str, Any], Callable[[Any], Optional[TaskId]]]


class LocalTaskStore(TaskStore):
    """Tasks stored in a JSON file on disk."""

    name = "local"

    def __init__(
        self,
        tasks_file: Union[str, Path] = DEFAULT_TASKS_FILE,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        self.path = Path(tasks_file)
        self.lock_timeout = lock_timeout

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    def ensure_available(self) -> None:
        if not self.path.is_file():
            raise StoreUnavailableError(
                f"Tasks file not found: {self.path}", backend=self.name
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self) -> Tuple[Any, List[Dict[str, Any]]]:
        """Return the whole document and its task list."""
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise TaskStoreReadError(
                f"Tasks file not found: {self.path}", backend=self.name
            ) from exc
        except (OSError, json.JSONDecodeError) as exc:
            raise TaskStoreReadError(
                f"Could not read tasks file {self.path}: {exc}", backend=self.name
            ) from exc

        records = document.get("tasks") if isinstance(document, dict) else document
        if not isinstance(records, list):
            raise TaskStoreReadError(
                f"Tasks file {self.path} has no 'tasks' list", backend=self.name
            )
        return document, [r for r in records if isinstance(r, dict)]

    def list_tasks(self) -> List[Task]:
        _, records = self._read()
        return [Task.from_dict(record) for record in records]

    def id_exists(self, task_id: TaskId) -> bool:
        _, records = self._read()
        return _locate(records, task_id) is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def remove_dependency_edge(self, task_id: TaskId, dependency_id: TaskId) -> EdgeResult:
        def mutate(record: Dict[str, Any], resolve) -> Optional[str]:
            deps = dependency_entries(record.get("dependencies"), task_id)
            kept = [raw for raw in deps if resolve(raw) != dependency_id]
            if len(kept) == len(deps):
                return f"Dependency {dependency_id} not found on task {task_id}"
            record["dependencies"] = kept
            return None

        return self._mutate(task_id, mutate)

    def add_dependency_edge(self, task_id: TaskId, dependency_id: TaskId) -> EdgeResult:
        def mutate(record: Dict[str, Any], resolve) -> Optional[str]:
            deps = list(dependency_entries(record.get("dependencies"), task_id))
            if any(resolve(raw) == dependency_id for raw in deps):
                return f"Task {task_id} already depends on {dependency_id}"
            deps.append(dependency_id.to_json())
            record["dependencies"] = deps
            return None

        return self._mutate(task_id, mutate)

    def set_task_status(self, task_id: TaskId, status: TaskStatus) -> EdgeResult:
        def mutate(record: Dict[str, Any], resolve) -> Optional[str]:
            record["status"] = status.value
            return None

        return self._mutate(task_id, mutate)

    def _mutate(self, task_id: TaskId, mutate) -> EdgeResult:
        """Locked read-modify-write of one task record.

        ``mutate`` edits the record in place and returns a failure reason, or
        None when the file should be rewritten.
        """
        try:
            with FileLock(self.lock_path, timeout=self.lock_timeout):
                try:
                    document, records = self._read()
                except TaskStoreReadError as exc:
                    return False, str(exc)

                located = _locate(records, task_id)
                if located is None:
                    return False, f"Task {task_id} not found"
                record, resolve = located

                reason = mutate(record, resolve)
                if reason is not None:
                    return False, reason

                try:
                    self._write(document)
                except OSError as exc:
                    return False, f"Could not write tasks file {self.path}: {exc}"
                return True, None
        except Timeout:
            return False, f"Timed out waiting for lock on {self.path}"

    def _write(self, document: Any) -> None:
        temp_file = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
            temp_file.replace(self.path)
        except OSError:
            if temp_file.exists():
                temp_file.unlink()
            raise
        logger.debug("Rewrote tasks file %s", self.path)


def _locate(records: List[Dict[str, Any]], task_id: TaskId) -> Optional[_Located]:
    """Find the raw record for a task or subtask id.

    The returned resolver maps the record's raw dependency entries to ids the
    same way ``Task.from_dict`` does.
    """
    if isinstance(task_id, NumericId):
        for record in records:
            if try_parse_task_id(record.get("id")) == task_id:
                return record, try_parse_task_id
        return None

    if isinstance(task_id, SubtaskAddress):
        parent_id = task_id.parent_id
        for record in records:
            if try_parse_task_id(record.get("id")) != parent_id:
                continue
            subtasks = subtask_records(record.get("subtasks"), parent_id)
            sibling_ids = {
                sub_id.value
                for sub_id in (try_parse_task_id(s.get("id")) for s in subtasks)
                if isinstance(sub_id, NumericId)
            }
            for sub in subtasks:
                sub_id = try_parse_task_id(sub.get("id"))
                if sub_id in (NumericId(task_id.sub), task_id):

                    def resolve(raw: Any) -> Optional[TaskId]:
                        return resolve_subtask_dependency(raw, parent_id, sibling_ids)

                    return sub, resolve
        return None

    return None
