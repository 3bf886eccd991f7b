"""Task commands for the taskgraph CLI.

Next-task selection, listing, single-task details and status changes.
"""

from typing import Optional

import click

from taskgraph_mcp.cli.logging import cli_command, get_cli_logger, get_request_id
from taskgraph_mcp.cli.output import (
    emit_error,
    emit_response,
    emit_store_error,
    emit_success,
)
from taskgraph_mcp.cli.registry import get_context
from taskgraph_mcp.cli.resilience import (
    MEDIUM_TIMEOUT,
    handle_keyboard_interrupt,
    with_sync_timeout,
)
from taskgraph_mcp.core.context import set_backend
from taskgraph_mcp.core.models import (
    InvalidTaskIdError,
    TaskId,
    TaskNotFoundError,
    TaskStatus,
    flatten_tasks,
    parse_task_id,
)
from taskgraph_mcp.core.responses import not_found_error
from taskgraph_mcp.core.selector import eligible_tasks
from taskgraph_mcp.core.stores import TaskStoreError
from taskgraph_mcp.core.tasks import get_task_details, set_task_status

logger = get_cli_logger()


def _load(ctx: click.Context):
    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        store.ensure_available()
        return store.name, flatten_tasks(store.list_tasks())
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()


@click.group("tasks")
def tasks() -> None:
    """Task selection, listing and status commands."""
    pass


@tasks.command("next")
@click.pass_context
@cli_command("tasks-next")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Task selection timed out")
def next_task(ctx: click.Context) -> None:
    """Find the highest-priority task whose dependencies are all done."""
    backend, all_tasks = _load(ctx)
    candidates = eligible_tasks(all_tasks)

    if candidates:
        emit_success({
            "found": True,
            "backend": backend,
            "task": candidates[0].summary(),
            "eligible_count": len(candidates),
        })
        return

    complete = bool(all_tasks) and all(task.is_satisfied for task in all_tasks)
    pending = sum(1 for task in all_tasks if task.status is TaskStatus.PENDING)
    logger.debug("No eligible task", pending=pending)
    emit_success({
        "found": False,
        "backend": backend,
        "task": None,
        "all_complete": complete,
        "message": "All tasks completed"
        if complete
        else f"No eligible tasks ({pending} pending task(s) are waiting on dependencies)",
    })


@tasks.command("list")
@click.option(
    "--status",
    "status_filter",
    default=None,
    help="Only list tasks with this status (e.g. pending, done)",
)
@click.pass_context
@cli_command("tasks-list")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Task listing timed out")
def list_tasks_cmd(ctx: click.Context, status_filter: Optional[str]) -> None:
    """List tasks and subtasks in snapshot order."""
    wanted = None
    if status_filter is not None:
        wanted = TaskStatus.lookup(status_filter)
        if wanted is None:
            emit_error(
                f"Unknown status '{status_filter}'",
                code="INVALID_FORMAT",
                error_type="validation",
                remediation="Use one of: " + ", ".join(s.value for s in TaskStatus),
                details={"field": "status"},
            )

    backend, all_tasks = _load(ctx)
    selected = [
        task.summary() for task in all_tasks if wanted is None or task.status is wanted
    ]
    emit_success({
        "backend": backend,
        "tasks": selected,
        "count": len(selected),
        "total": len(all_tasks),
        "status_filter": wanted.value if wanted else None,
    })


def _parse_id(raw: str) -> TaskId:
    try:
        return parse_task_id(raw)
    except InvalidTaskIdError as exc:
        emit_error(
            str(exc),
            code="VALIDATION_ERROR",
            error_type="validation",
            remediation="Use an integer id, a parent.sub address, or a tracker key like PROJ-123",
            details={"field": "task_id", "value": raw},
        )


def _emit_not_found(task_id: TaskId) -> None:
    emit_response(
        not_found_error("Task", str(task_id), request_id=get_request_id() or None)
    )


@tasks.command("show")
@click.argument("task_id")
@click.pass_context
@cli_command("tasks-show")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Task lookup timed out")
def show_cmd(ctx: click.Context, task_id: str) -> None:
    """Show TASK_ID with its subtasks and what it is waiting on."""
    parsed = _parse_id(task_id)

    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        store.ensure_available()
        details = get_task_details(store.list_tasks(), parsed)
    except TaskNotFoundError:
        _emit_not_found(parsed)
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    emit_success({"backend": store.name, **details.to_dict()})


@tasks.command("set-status")
@click.argument("task_id")
@click.argument("status")
@click.pass_context
@cli_command("tasks-set-status")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Status update timed out")
def set_status_cmd(ctx: click.Context, task_id: str, status: str) -> None:
    """Move TASK_ID to STATUS; completing a parent completes its subtasks."""
    parsed = _parse_id(task_id)
    wanted = TaskStatus.lookup(status)
    if wanted is None:
        emit_error(
            f"Unknown status '{status}'",
            code="INVALID_FORMAT",
            error_type="validation",
            remediation="Use one of: " + ", ".join(s.value for s in TaskStatus),
            details={"field": "status"},
        )

    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        change = set_task_status(store, parsed, wanted)
    except TaskNotFoundError:
        _emit_not_found(parsed)
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    warnings = [
        f"Subtask {sub} was not updated: {reason}" for sub, reason in change.failures
    ] or None
    emit_success({"backend": store.name, **change.to_dict()}, warnings=warnings)
