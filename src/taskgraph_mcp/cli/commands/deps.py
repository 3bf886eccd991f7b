"""Dependency graph commands for the taskgraph CLI.

Validate, repair and hand-edit dependency edges in the configured store.
"""

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
    SLOW_TIMEOUT,
    handle_keyboard_interrupt,
    with_sync_timeout,
)
from taskgraph_mcp.core.context import set_backend
from taskgraph_mcp.core.dependencies import (
    CircularDependencyError,
    DependencyEditError,
    DependencyNotFoundError,
    DuplicateDependencyError,
    SelfDependencyError,
    add_dependency,
    build_validation_report,
    fix_dependencies,
    remove_dependency,
)
from taskgraph_mcp.core.models import (
    InvalidTaskIdError,
    TaskId,
    TaskNotFoundError,
    parse_task_id,
)
from taskgraph_mcp.core.responses import (
    circular_dependency_error,
    dependency_not_found_error,
    duplicate_dependency_error,
    not_found_error,
    self_reference_error,
)
from taskgraph_mcp.core.selector import get_dependency_status
from taskgraph_mcp.core.stores import TaskStoreError

logger = get_cli_logger()


def _parse_id(raw: str, field: str) -> TaskId:
    try:
        return parse_task_id(raw)
    except InvalidTaskIdError as exc:
        emit_error(
            str(exc),
            code="VALIDATION_ERROR",
            error_type="validation",
            remediation="Use an integer id, a parent.sub address, or a tracker key like PROJ-123",
            details={"field": field, "value": raw},
        )


def _emit_edit_error(exc: Exception, operation: str) -> None:
    request_id = get_request_id() or None
    if isinstance(exc, TaskNotFoundError):
        response = not_found_error("Task", str(exc.task_id), request_id=request_id)
    elif isinstance(exc, SelfDependencyError):
        response = self_reference_error(str(exc.task_id), operation, request_id=request_id)
    elif isinstance(exc, DuplicateDependencyError):
        response = duplicate_dependency_error(
            str(exc.task_id), str(exc.dependency_id), request_id=request_id
        )
    elif isinstance(exc, CircularDependencyError):
        response = circular_dependency_error(
            str(exc.task_id),
            str(exc.dependency_id),
            cycle_path=[str(node) for node in exc.cycle],
            request_id=request_id,
        )
    elif isinstance(exc, DependencyNotFoundError):
        response = dependency_not_found_error(
            str(exc.task_id), str(exc.dependency_id), request_id=request_id
        )
    else:
        emit_error(str(exc), code="VALIDATION_ERROR", error_type="validation")
    emit_response(response)


@click.group("deps")
def deps() -> None:
    """Dependency graph commands."""
    pass


@deps.command("validate")
@click.pass_context
@cli_command("deps-validate")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Dependency validation timed out")
def validate_cmd(ctx: click.Context) -> None:
    """Report self, missing and circular dependencies without changing anything."""
    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        store.ensure_available()
        report = build_validation_report(store.list_tasks())
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    warnings = None
    if not report["valid"]:
        warnings = [f"{len(report['issues'])} invalid dependencies found"]
    emit_success({"backend": store.name, **report}, warnings=warnings)


@deps.command("fix")
@click.pass_context
@cli_command("deps-fix")
@handle_keyboard_interrupt()
@with_sync_timeout(SLOW_TIMEOUT, "Dependency repair timed out")
def fix_cmd(ctx: click.Context) -> None:
    """Remove every invalid dependency edge the store allows."""
    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        result = fix_dependencies(store)
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    warnings = None
    if result.unfixable:
        warnings = [
            f"{failure.violation.task_id} -> {failure.violation.dependency_id}: "
            f"{failure.reason}"
            for failure in result.failures
        ]
    emit_success({"backend": store.name, **result.to_dict()}, warnings=warnings)


@deps.command("add")
@click.argument("task_id")
@click.argument("depends_on")
@click.pass_context
@cli_command("deps-add")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Adding dependency timed out")
def add_cmd(ctx: click.Context, task_id: str, depends_on: str) -> None:
    """Make TASK_ID depend on DEPENDS_ON, refusing edges that close a cycle."""
    parsed_task = _parse_id(task_id, "task_id")
    parsed_dep = _parse_id(depends_on, "depends_on")

    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        edit = add_dependency(store, parsed_task, parsed_dep)
    except (DependencyEditError, TaskNotFoundError) as exc:
        _emit_edit_error(exc, "dependency add")
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    emit_success({"backend": store.name, **edit.to_dict()})


@deps.command("remove")
@click.argument("task_id")
@click.argument("depends_on")
@click.pass_context
@cli_command("deps-remove")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Removing dependency timed out")
def remove_cmd(ctx: click.Context, task_id: str, depends_on: str) -> None:
    """Remove the TASK_ID -> DEPENDS_ON edge."""
    parsed_task = _parse_id(task_id, "task_id")
    parsed_dep = _parse_id(depends_on, "depends_on")

    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        edit = remove_dependency(store, parsed_task, parsed_dep)
    except (DependencyEditError, TaskNotFoundError) as exc:
        _emit_edit_error(exc, "dependency remove")
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    emit_success({"backend": store.name, **edit.to_dict()})


@deps.command("status")
@click.argument("task_id")
@click.pass_context
@cli_command("deps-status")
@handle_keyboard_interrupt()
@with_sync_timeout(MEDIUM_TIMEOUT, "Dependency status timed out")
def status_cmd(ctx: click.Context, task_id: str) -> None:
    """Show what blocks TASK_ID and which tasks wait on it."""
    parsed_task = _parse_id(task_id, "task_id")

    store = get_context(ctx).open_store()
    set_backend(store.name)
    try:
        store.ensure_available()
        status = get_dependency_status(store.list_tasks(), parsed_task)
    except TaskNotFoundError as exc:
        _emit_edit_error(exc, "status")
    except TaskStoreError as exc:
        emit_store_error(exc)
    finally:
        store.close()

    emit_success(status.to_dict())
