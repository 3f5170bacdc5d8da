"""CLI entrypoint for agent-crew."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_crew import __version__
from agent_crew.orchestrator.controllers import (
    BusinessAddCommand,
    CommandResult,
    OrchestratorCliController,
    QueueProcessCommand,
    QueueProcessSingleCommand,
    QueueRunCommand,
    QueueStatusCommand,
    RolesCommand,
    TaskAddCommand,
    TaskInspectCommand,
    TaskListCommand,
    TaskMutateCommand,
    TaskPublishCommand,
    TaskRejectCommand,
)
from agent_crew.orchestrator.errors import OrchestratorError
from agent_crew.orchestrator.models import AutonomyLevel, TaskStatus, TaskType, WorkerRole

click.rich_click.USE_MARKDOWN = True
ORCHESTRATOR_CONTROLLER = OrchestratorCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)
BUSINESS_OPTION = click.option("--business-id", required=True, help="Tenant (business) id.")
TASK_OPTION = click.option("--task-id", required=True, help="Task id.")
FORMAT_OPTION = click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    show_default=True,
    help="Output format.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-crew")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def agent_crew(log_level: str) -> None:
    """Task orchestration for a crew of specialized workers."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@agent_crew.group()
def business() -> None:
    """Tenant commands."""


@business.command("add")
@DB_PATH_OPTION
@BUSINESS_OPTION
@click.option("--name", required=True, help="Display name.")
@click.option(
    "--autonomy",
    type=click.Choice([level.value for level in AutonomyLevel]),
    default=AutonomyLevel.SUPERVISED.value,
    show_default=True,
    help="Approval configuration consumed by the review gate.",
)
def business_add(db_path: Path | None, business_id: str, name: str, autonomy: str) -> None:
    """Create or update a business."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.add_business(
            BusinessAddCommand(
                db_path=db_path,
                business_id=business_id,
                name=name,
                autonomy_level=autonomy,
            ),
        ),
    )


@agent_crew.group()
def task() -> None:
    """Task commands."""


@task.command("add")
@DB_PATH_OPTION
@BUSINESS_OPTION
@click.option(
    "--type",
    "task_type",
    type=click.Choice([task_type.value for task_type in TaskType]),
    required=True,
    help="Work category.",
)
@click.option("--title", required=True, help="Short task title.")
@click.option("--description", default=None, help="Longer description.")
@click.option(
    "--assign-to",
    type=click.Choice([role.value for role in WorkerRole]),
    default=None,
    help="Explicit worker role; resolved from the type table when omitted.",
)
@click.option(
    "--priority",
    type=click.IntRange(min=1, max=10),
    default=5,
    show_default=True,
    help="Higher is dispatched first.",
)
@click.option("--input", "input_json", default=None, help="Worker input as a JSON object.")
@click.option("--parent-task-id", default=None, help="Parent task in the same business.")
@FORMAT_OPTION
def task_add(  # noqa: PLR0913
    db_path: Path | None,
    business_id: str,
    task_type: str,
    title: str,
    description: str | None,
    assign_to: str | None,
    priority: int,
    input_json: str | None,
    parent_task_id: str | None,
    output_format: str,
) -> None:
    """Enqueue a task."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.add_task(
            TaskAddCommand(
                db_path=db_path,
                business_id=business_id,
                task_type=task_type,
                title=title,
                description=description,
                assigned_to=assign_to,
                priority=priority,
                input_json=input_json,
                parent_task_id=parent_task_id,
                output_format=output_format,
            ),
        ),
    )


@task.command("list")
@DB_PATH_OPTION
@BUSINESS_OPTION
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
    help="Optional status filter.",
)
@click.option("--parent-task-id", default=None, help="Only children of this task.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Max number of tasks to print.",
)
@FORMAT_OPTION
def task_list(  # noqa: PLR0913
    db_path: Path | None,
    business_id: str,
    status: str | None,
    parent_task_id: str | None,
    limit: int,
    output_format: str,
) -> None:
    """List recent tasks of a business."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.list_tasks(
            TaskListCommand(
                db_path=db_path,
                business_id=business_id,
                status=status,
                parent_task_id=parent_task_id,
                limit=limit,
                output_format=output_format,
            ),
        ),
    )


@task.command("show")
@DB_PATH_OPTION
@TASK_OPTION
@FORMAT_OPTION
def task_show(db_path: Path | None, task_id: str, output_format: str) -> None:
    """Show one task with its events and children."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.inspect_task(
            TaskInspectCommand(db_path=db_path, task_id=task_id, output_format=output_format),
        ),
    )


@task.command("approve")
@DB_PATH_OPTION
@TASK_OPTION
def task_approve(db_path: Path | None, task_id: str) -> None:
    """Approve a task waiting in review."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.approve_task(
            TaskMutateCommand(db_path=db_path, task_id=task_id),
        ),
    )


@task.command("reject")
@DB_PATH_OPTION
@TASK_OPTION
@click.option("--reason", required=True, help="Why the output was rejected.")
def task_reject(db_path: Path | None, task_id: str, reason: str) -> None:
    """Reject a task waiting in review."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.reject_task(
            TaskRejectCommand(db_path=db_path, task_id=task_id, reason=reason),
        ),
    )


@task.command("cancel")
@DB_PATH_OPTION
@TASK_OPTION
def task_cancel(db_path: Path | None, task_id: str) -> None:
    """Cancel a queued, running or review task."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.cancel_task(
            TaskMutateCommand(db_path=db_path, task_id=task_id),
        ),
    )


@task.command("retry")
@DB_PATH_OPTION
@TASK_OPTION
def task_retry(db_path: Path | None, task_id: str) -> None:
    """Re-queue a failed or cancelled task."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.retry_task(
            TaskMutateCommand(db_path=db_path, task_id=task_id),
        ),
    )


@task.command("publish")
@DB_PATH_OPTION
@TASK_OPTION
@click.option("--output", "output_json", default=None, help="Final output as a JSON object.")
def task_publish(db_path: Path | None, task_id: str, output_json: str | None) -> None:
    """Mark an approved task as completed."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.publish_task(
            TaskPublishCommand(db_path=db_path, task_id=task_id, output_json=output_json),
        ),
    )


@agent_crew.group()
def queue() -> None:
    """Dispatch commands."""


@queue.command("process")
@DB_PATH_OPTION
@BUSINESS_OPTION
@FORMAT_OPTION
def queue_process(db_path: Path | None, business_id: str, output_format: str) -> None:
    """Run one dispatch cycle for a business."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.process_queue(
            QueueProcessCommand(
                db_path=db_path,
                business_id=business_id,
                output_format=output_format,
            ),
        ),
    )


@queue.command("process-single")
@DB_PATH_OPTION
@TASK_OPTION
@FORMAT_OPTION
def queue_process_single(db_path: Path | None, task_id: str, output_format: str) -> None:
    """Force one queued task through the pipeline."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.process_single(
            QueueProcessSingleCommand(
                db_path=db_path,
                task_id=task_id,
                output_format=output_format,
            ),
        ),
    )


@queue.command("status")
@DB_PATH_OPTION
@BUSINESS_OPTION
@FORMAT_OPTION
def queue_status(db_path: Path | None, business_id: str, output_format: str) -> None:
    """Show queue counters by status and role."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.queue_status(
            QueueStatusCommand(
                db_path=db_path,
                business_id=business_id,
                output_format=output_format,
            ),
        ),
    )


@queue.command("run")
@DB_PATH_OPTION
@click.option(
    "--business-id",
    "business_ids",
    multiple=True,
    required=True,
    help="Tenant to dispatch. Can be repeated.",
)
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many polling cycles.",
)
@click.option(
    "--stop-when-idle",
    is_flag=True,
    default=False,
    help="Exit after the first cycle that finds nothing to do.",
)
def queue_run(
    db_path: Path | None,
    business_ids: tuple[str, ...],
    max_cycles: int | None,
    stop_when_idle: bool,
) -> None:
    """Poll and dispatch until SIGINT/SIGTERM."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.run_queue(
            QueueRunCommand(
                db_path=db_path,
                business_ids=business_ids,
                max_cycles=max_cycles,
                stop_when_idle=stop_when_idle,
            ),
        ),
    )


@agent_crew.command("roles")
@DB_PATH_OPTION
@BUSINESS_OPTION
@FORMAT_OPTION
def roles(db_path: Path | None, business_id: str, output_format: str) -> None:
    """Show derived activity of each worker role."""

    _run(
        lambda: ORCHESTRATOR_CONTROLLER.roles(
            RolesCommand(db_path=db_path, business_id=business_id, output_format=output_format),
        ),
    )


def _run(action: Callable[[], CommandResult]) -> None:
    try:
        result = action()
    except (OrchestratorError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(result.error or "Command failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_crew()
