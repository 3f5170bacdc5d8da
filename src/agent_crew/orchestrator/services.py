"""Control plane: use-case operations that never raise past this boundary."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from agent_crew.orchestrator.contracts import read_plan_items
from agent_crew.orchestrator.dispatcher import QueueDispatcher
from agent_crew.orchestrator.errors import OrchestratorError
from agent_crew.orchestrator.models import (
    HUMAN_CREATOR,
    AutonomyLevel,
    TaskCreate,
    TaskType,
    WorkerRole,
)
from agent_crew.orchestrator.repository import TaskRepository
from agent_crew.orchestrator.routing import RoutingTable, resolve_role_for_enqueue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ControlResult:
    """Uniform control-plane response."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class EnqueueTask:
    """High-level command to put a task on a tenant's queue."""

    business_id: str
    task_type: str
    title: str
    description: str | None = None
    assigned_to: str | None = None
    priority: int = 5
    input: dict[str, Any] = field(default_factory=dict)
    parent_task_id: str | None = None
    created_by: str = HUMAN_CREATOR


class OrchestratorService:
    """Coordinates the store, router and dispatcher for external callers."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        dispatcher: QueueDispatcher,
        routing: RoutingTable | None = None,
    ) -> None:
        self.repository = repository
        self.dispatcher = dispatcher
        self.routing = routing or dispatcher.routing

    def register_business(
        self,
        *,
        business_id: str,
        name: str,
        autonomy_level: str = AutonomyLevel.SUPERVISED.value,
    ) -> ControlResult:
        def _run() -> dict[str, Any]:
            business = self.repository.upsert_business(
                business_id=business_id,
                name=name,
                autonomy_level=AutonomyLevel(autonomy_level),
            )
            return {
                "business_id": business.business_id,
                "name": business.name,
                "autonomy_level": business.autonomy_level.value,
            }

        return _control("register_business", _run)

    def enqueue_task(self, command: EnqueueTask) -> ControlResult:
        """Validate, freeze the role when resolvable, and enqueue."""

        def _run() -> dict[str, Any]:
            task_type = _parse_task_type(command.task_type)
            explicit_role = _parse_role(command.assigned_to) if command.assigned_to else None
            task = self.repository.enqueue_task(
                TaskCreate(
                    business_id=command.business_id,
                    task_type=task_type,
                    title=command.title,
                    description=command.description,
                    assigned_to=resolve_role_for_enqueue(
                        task_type=task_type,
                        assigned_to=explicit_role,
                        table=self.routing,
                    ),
                    created_by=command.created_by,
                    priority=command.priority,
                    input=command.input,
                    parent_task_id=command.parent_task_id,
                ),
            )
            return task.to_dict()

        return _control("enqueue_task", _run)

    def process_queue(self, business_id: str) -> ControlResult:
        """Run one dispatch cycle; data is ``{total, processed, failed, details}``."""

        return _control("process_queue", lambda: self.dispatcher.run_cycle(business_id).to_dict())

    def process_single(self, task_id: str) -> ControlResult:
        def _run() -> ControlResult:
            detail = self.dispatcher.process_single(task_id)
            return ControlResult(
                success=detail.success and not detail.discarded,
                data=detail.to_dict(),
                error=detail.error,
            )

        return _control_result("process_single", _run)

    def get_queue_status(self, business_id: str) -> ControlResult:
        def _run() -> dict[str, Any]:
            self.repository.require_business(business_id)
            return self.repository.queue_status(business_id).to_dict()

        return _control("get_queue_status", _run)

    def approve(self, task_id: str, *, actor: str = HUMAN_CREATOR) -> ControlResult:
        return _control(
            "approve",
            lambda: self.repository.approve_task(task_id=task_id, actor=actor).to_dict(),
        )

    def reject(self, task_id: str, reason: str, *, actor: str = HUMAN_CREATOR) -> ControlResult:
        return _control(
            "reject",
            lambda: self.repository.reject_task(
                task_id=task_id,
                reason=reason,
                actor=actor,
            ).to_dict(),
        )

    def cancel(self, task_id: str) -> ControlResult:
        return _control("cancel", lambda: self.repository.cancel_task(task_id=task_id).to_dict())

    def requeue(self, task_id: str) -> ControlResult:
        return _control("requeue", lambda: self.repository.requeue_task(task_id=task_id).to_dict())

    def complete_approved(
        self,
        task_id: str,
        *,
        output: dict[str, Any] | None = None,
    ) -> ControlResult:
        return _control(
            "complete_approved",
            lambda: self.repository.complete_approved_task(
                task_id=task_id,
                output=output,
            ).to_dict(),
        )

    def spawn_subtasks(self, parent_task_id: str, plan: dict[str, Any]) -> ControlResult:
        def _run() -> dict[str, Any]:
            items = read_plan_items(plan)
            task_ids = self.dispatcher.spawner.spawn(parent_task_id, items)
            return {"parent_task_id": parent_task_id, "task_ids": task_ids}

        return _control("spawn_subtasks", _run)

    def role_activity(self, business_id: str) -> ControlResult:
        def _run() -> dict[str, Any]:
            self.repository.require_business(business_id)
            activity = self.repository.role_activity(business_id)
            return {role: state.value for role, state in activity.items()}

        return _control("role_activity", _run)


def _control(action: str, run: Callable[[], dict[str, Any]]) -> ControlResult:
    return _control_result(action, lambda: ControlResult(success=True, data=run()))


def _control_result(action: str, run: Callable[[], ControlResult]) -> ControlResult:
    try:
        return run()
    except (OrchestratorError, ValueError, TypeError) as error:
        logger.warning("%s failed: %s", action, error)
        return ControlResult(success=False, error=str(error))
    except Exception as error:  # noqa: BLE001
        logger.exception("%s failed unexpectedly", action)
        return ControlResult(success=False, error=f"Unexpected error: {error}")


def _parse_task_type(value: str) -> TaskType:
    try:
        return TaskType(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(task_type.value for task_type in TaskType)
        raise ValueError(f"Unknown task type {value!r}; expected one of: {allowed}") from error


def _parse_role(value: str) -> WorkerRole:
    try:
        return WorkerRole(value.strip().lower())
    except ValueError as error:
        allowed = ", ".join(role.value for role in WorkerRole)
        raise ValueError(f"Unknown worker role {value!r}; expected one of: {allowed}") from error
