"""Controllers for orchestrator CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_crew.config import Settings
from agent_crew.orchestrator.dispatcher import QueueDispatcher
from agent_crew.orchestrator.invoker import EchoWorkerInvoker, HttpWorkerInvoker, WorkerInvoker
from agent_crew.orchestrator.metrics import (
    render_cycle_summary_lines,
    render_dispatch_detail_line,
    render_queue_status_lines,
    render_role_activity_lines,
    render_task_details_lines,
    render_task_line,
)
from agent_crew.orchestrator.models import TaskStatus
from agent_crew.orchestrator.notifier import (
    ChangeNotifier,
    LoggingChangeNotifier,
    NullChangeNotifier,
    RedisChangeNotifier,
)
from agent_crew.orchestrator.repository import TaskRepository
from agent_crew.orchestrator.routing import RoutingTable
from agent_crew.orchestrator.services import ControlResult, EnqueueTask, OrchestratorService


@dataclass(slots=True)
class CommandResult:
    """Lines to print plus whether the command succeeded."""

    lines: list[str]
    success: bool = True
    error: str | None = None


@dataclass(slots=True)
class BusinessAddCommand:
    """CLI input for tenant registration."""

    db_path: Path | None
    business_id: str
    name: str
    autonomy_level: str


@dataclass(slots=True)
class TaskAddCommand:
    """CLI input for task enqueue."""

    db_path: Path | None
    business_id: str
    task_type: str
    title: str
    description: str | None = None
    assigned_to: str | None = None
    priority: int = 5
    input_json: str | None = None
    parent_task_id: str | None = None
    output_format: str = "table"


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    business_id: str
    status: str | None
    parent_task_id: str | None
    limit: int
    output_format: str = "table"


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str
    output_format: str = "table"


@dataclass(slots=True)
class TaskMutateCommand:
    """CLI input for approve/cancel/retry operations."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class TaskRejectCommand:
    """CLI input for review rejection."""

    db_path: Path | None
    task_id: str
    reason: str


@dataclass(slots=True)
class TaskPublishCommand:
    """CLI input for closing an approved task."""

    db_path: Path | None
    task_id: str
    output_json: str | None = None


@dataclass(slots=True)
class QueueProcessCommand:
    """CLI input for one dispatch cycle."""

    db_path: Path | None
    business_id: str
    output_format: str = "table"


@dataclass(slots=True)
class QueueProcessSingleCommand:
    """CLI input for forcing one task through the pipeline."""

    db_path: Path | None
    task_id: str
    output_format: str = "table"


@dataclass(slots=True)
class QueueStatusCommand:
    """CLI input for queue counters."""

    db_path: Path | None
    business_id: str
    output_format: str = "table"


@dataclass(slots=True)
class QueueRunCommand:
    """CLI input for the polling dispatch loop."""

    db_path: Path | None
    business_ids: tuple[str, ...] = field(default_factory=tuple)
    max_cycles: int | None = None
    stop_when_idle: bool = False


@dataclass(slots=True)
class RolesCommand:
    """CLI input for derived role activity."""

    db_path: Path | None
    business_id: str
    output_format: str = "table"


class OrchestratorCliController:
    """Coordinates tenant, task, queue and role CLI operations."""

    def add_business(self, command: BusinessAddCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.register_business(
                business_id=command.business_id,
                name=command.name,
                autonomy_level=command.autonomy_level,
            )
        if not result.success or result.data is None:
            return _failure(result)
        return CommandResult(
            lines=[
                f"Business saved: business_id={result.data['business_id']} "
                f"autonomy={result.data['autonomy_level']}",
            ],
        )

    def add_task(self, command: TaskAddCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        task_input = _parse_json_object(command.input_json, option="--input")
        with _service(settings) as service:
            result = service.enqueue_task(
                EnqueueTask(
                    business_id=command.business_id,
                    task_type=command.task_type,
                    title=command.title,
                    description=command.description,
                    assigned_to=command.assigned_to,
                    priority=command.priority,
                    input=task_input,
                    parent_task_id=command.parent_task_id,
                ),
            )
        if not result.success or result.data is None:
            return _failure(result)
        if command.output_format == "json":
            return CommandResult(lines=[_dump(result.data)])
        task = result.data
        return CommandResult(
            lines=[
                "Task enqueued: "
                f"task_id={task['id']} type={task['type']} "
                f"role={task['assigned_to'] or '-'} status={task['status']}",
            ],
        )

    def list_tasks(self, command: TaskListCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(
                command.business_id,
                status=status_filter,
                parent_task_id=command.parent_task_id,
                limit=command.limit,
            )

        if command.output_format == "json":
            return CommandResult(
                lines=[_dump({"tasks": [task.to_dict() for task in tasks], "count": len(tasks)})],
            )
        lines = [f"Tasks: {len(tasks)}"]
        lines.extend(render_task_line(task.to_dict()) for task in tasks)
        return CommandResult(lines=lines)

    def inspect_task(self, command: TaskInspectCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return CommandResult(
                lines=[],
                success=False,
                error=f"Task not found: {command.task_id}",
            )

        if command.output_format == "json":
            payload = details.task.to_dict()
            payload["child_task_ids"] = list(details.child_task_ids)
            payload["events"] = [
                {
                    "event_type": event.event_type,
                    "status_from": event.status_from.value if event.status_from else None,
                    "status_to": event.status_to.value if event.status_to else None,
                    "created_at": event.created_at.isoformat(),
                    "details": event.details,
                }
                for event in details.events
            ]
            return CommandResult(lines=[_dump(payload)])
        return CommandResult(lines=render_task_details_lines(details))

    def approve_task(self, command: TaskMutateCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.approve(command.task_id)
        return _task_result(result, verb="approved")

    def reject_task(self, command: TaskRejectCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.reject(command.task_id, command.reason)
        return _task_result(result, verb="rejected")

    def cancel_task(self, command: TaskMutateCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.cancel(command.task_id)
        return _task_result(result, verb="cancelled")

    def retry_task(self, command: TaskMutateCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.requeue(command.task_id)
        return _task_result(result, verb="re-queued")

    def publish_task(self, command: TaskPublishCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        output = (
            _parse_json_object(command.output_json, option="--output")
            if command.output_json is not None
            else None
        )
        with _service(settings) as service:
            result = service.complete_approved(command.task_id, output=output)
        return _task_result(result, verb="completed")

    def process_queue(self, command: QueueProcessCommand) -> CommandResult:
        settings = _validated_settings(command.db_path)
        with _service(settings) as service:
            result = service.process_queue(command.business_id)
        if not result.success or result.data is None:
            return _failure(result)
        if command.output_format == "json":
            return CommandResult(lines=[_dump(result.data)])
        return CommandResult(lines=render_cycle_summary_lines(result.data))

    def process_single(self, command: QueueProcessSingleCommand) -> CommandResult:
        settings = _validated_settings(command.db_path)
        with _service(settings) as service:
            result = service.process_single(command.task_id)
        if command.output_format == "json":
            return CommandResult(
                lines=[_dump(result.to_dict())],
                success=result.success,
                error=result.error,
            )
        if result.data is None:
            return _failure(result)
        return CommandResult(
            lines=["Processed task:", render_dispatch_detail_line(result.data)],
            success=result.success,
            error=result.error,
        )

    def queue_status(self, command: QueueStatusCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.get_queue_status(command.business_id)
        if not result.success or result.data is None:
            return _failure(result)
        if command.output_format == "json":
            return CommandResult(lines=[_dump(result.data)])
        return CommandResult(
            lines=render_queue_status_lines(business_id=command.business_id, status=result.data),
        )

    def run_queue(self, command: QueueRunCommand) -> CommandResult:
        settings = _validated_settings(command.db_path)
        with _service(settings) as service:
            business_ids = command.business_ids
            for business_id in business_ids:
                service.repository.require_business(business_id)
            summary = service.dispatcher.run_loop(
                business_ids,
                max_cycles=command.max_cycles,
                stop_when_idle=command.stop_when_idle,
            )
        return CommandResult(
            lines=[
                "Dispatch loop summary: "
                f"cycles={summary.cycles} processed={summary.processed} "
                f"failed={summary.failed} idle_cycles={summary.idle_cycles} "
                f"aborted_cycles={summary.aborted_cycles}",
            ],
        )

    def roles(self, command: RolesCommand) -> CommandResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _service(settings) as service:
            result = service.role_activity(command.business_id)
        if not result.success or result.data is None:
            return _failure(result)
        if command.output_format == "json":
            return CommandResult(lines=[_dump(result.data)])
        return CommandResult(
            lines=render_role_activity_lines(
                business_id=command.business_id,
                activity=result.data,
            ),
        )


def build_notifier(settings: Settings) -> ChangeNotifier:
    """Notifier selected by ``AGENT_CREW_NOTIFIER``."""

    if settings.notifier.kind == "redis":
        return RedisChangeNotifier.from_url(
            settings.notifier.redis_url,
            channel_prefix=settings.notifier.channel_prefix,
        )
    if settings.notifier.kind == "none":
        return NullChangeNotifier()
    return LoggingChangeNotifier()


def build_invoker(settings: Settings) -> WorkerInvoker:
    """Invoker selected by ``AGENT_CREW_INVOKER``."""

    if settings.worker_api.invoker == "echo":
        return EchoWorkerInvoker()
    return HttpWorkerInvoker.from_settings(settings.worker_api)


def _validated_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskRepository]:
    repository = TaskRepository(
        db_path=settings.db_path,
        notifier=build_notifier(settings),
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
        notifier = repository.notifier
        if isinstance(notifier, RedisChangeNotifier):
            notifier.close()


@contextmanager
def _service(settings: Settings) -> Iterator[OrchestratorService]:
    routing = RoutingTable.from_settings(settings.orchestrator)
    invoker = build_invoker(settings)
    try:
        with _repository(settings) as repository:
            dispatcher = QueueDispatcher(
                repository=repository,
                invoker=invoker,
                routing=routing,
                batch_size=settings.orchestrator.batch_size,
                auto_approve_full_auto=settings.orchestrator.auto_approve_full_auto,
                poll_interval_seconds=settings.orchestrator.poll_interval_seconds,
            )
            yield OrchestratorService(
                repository=repository,
                dispatcher=dispatcher,
                routing=routing,
            )
    finally:
        if isinstance(invoker, HttpWorkerInvoker):
            invoker.close()


def _task_result(result: ControlResult, *, verb: str) -> CommandResult:
    if not result.success or result.data is None:
        return _failure(result)
    return CommandResult(
        lines=[f"Task {verb}: {result.data['id']} status={result.data['status']}"],
    )


def _failure(result: ControlResult) -> CommandResult:
    return CommandResult(lines=[], success=False, error=result.error or "Command failed.")


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _parse_json_object(raw: str | None, *, option: str) -> dict[str, Any]:
    if raw is None or not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        raise ValueError(f"{option} must be valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ValueError(f"{option} must be a JSON object")
    return payload


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)
