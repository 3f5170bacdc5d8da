"""Agent Router: task type (or explicit assignment) to worker role."""

from __future__ import annotations

from dataclasses import dataclass, field

from agent_crew.config import OrchestratorSettings
from agent_crew.orchestrator.errors import RoutingError
from agent_crew.orchestrator.models import TaskType, TaskView, WorkerRole

DEFAULT_TASK_ROLE_MAP: dict[TaskType, WorkerRole] = {
    TaskType.STRATEGY: WorkerRole.STRATEGIST,
    TaskType.REVIEW: WorkerRole.STRATEGIST,
    TaskType.RESEARCH: WorkerRole.RESEARCHER,
    TaskType.INTEL: WorkerRole.WATCHER,
    TaskType.WRITE: WorkerRole.WRITER,
    TaskType.DESIGN: WorkerRole.VISUAL_CREATOR,
    TaskType.PUBLISH: WorkerRole.PUBLISHER,
    TaskType.ENGAGE: WorkerRole.ENGAGER,
    TaskType.ANALYZE: WorkerRole.ANALYST,
}


@dataclass(slots=True)
class RoutingTable:
    """Static type-to-role table, keyed by the stored task type string."""

    task_role_map: dict[str, WorkerRole] = field(
        default_factory=lambda: {
            task_type.value: role for task_type, role in DEFAULT_TASK_ROLE_MAP.items()
        },
    )

    @classmethod
    def from_settings(cls, settings: OrchestratorSettings) -> RoutingTable:
        """Default table with configured overrides applied on top."""

        table = cls()
        for task_type, role in settings.task_role_overrides.items():
            table.task_role_map[task_type.value] = role
        return table

    def role_for_type(self, task_type: str) -> WorkerRole | None:
        return self.task_role_map.get(task_type.strip().lower())


def resolve_role(
    *,
    task_type: str,
    assigned_to: str | None,
    table: RoutingTable,
) -> WorkerRole:
    """Explicit assignment wins; otherwise look the type up in the table."""

    if assigned_to is not None and assigned_to.strip():
        try:
            return WorkerRole(assigned_to.strip().lower())
        except ValueError as error:
            raise RoutingError(
                f"Unknown worker role {assigned_to!r} assigned to {task_type!r} task",
            ) from error

    role = table.role_for_type(task_type)
    if role is None:
        raise RoutingError(f"No worker role configured for task type {task_type!r}")
    return role


def resolve_task_role(task: TaskView, *, table: RoutingTable) -> WorkerRole:
    return resolve_role(task_type=task.task_type, assigned_to=task.assigned_to, table=table)


def resolve_role_for_enqueue(
    *,
    task_type: TaskType,
    assigned_to: WorkerRole | None,
    table: RoutingTable,
) -> WorkerRole | None:
    """Freeze the role at enqueue time when the table can resolve it.

    An unresolvable type is not an enqueue error: the dispatcher resolves again
    and fails the task with a routing error if the table still has no entry.
    """

    if assigned_to is not None:
        return assigned_to
    return table.role_for_type(task_type.value)
