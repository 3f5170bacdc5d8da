"""Subtask Spawner: expand a strategist plan into child tasks."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from agent_crew.orchestrator.contracts import PlanItem
from agent_crew.orchestrator.errors import NotFoundError
from agent_crew.orchestrator.models import TaskCreate, WorkerRole
from agent_crew.orchestrator.repository import TaskRepository
from agent_crew.orchestrator.routing import RoutingTable, resolve_role_for_enqueue

logger = logging.getLogger(__name__)


class SubtaskSpawner:
    """Enqueue plan items under a parent, inheriting its tenant."""

    def __init__(self, repository: TaskRepository, *, routing: RoutingTable | None = None) -> None:
        self.repository = repository
        self.routing = routing or RoutingTable()

    def spawn(self, parent_task_id: str, plan_items: Sequence[PlanItem]) -> list[str]:
        """Create one queued child per item; returns the new ids in plan order.

        Siblings are independent: nothing here gates one child on another.
        """

        parent = self.repository.get_task(parent_task_id)
        if parent is None:
            raise NotFoundError(f"Parent task not found: {parent_task_id}")

        child_ids: list[str] = []
        for item in plan_items:
            child = self.repository.enqueue_task(
                TaskCreate(
                    business_id=parent.business_id,
                    task_type=item.task_type,
                    title=item.title,
                    description=item.description,
                    assigned_to=resolve_role_for_enqueue(
                        task_type=item.task_type,
                        assigned_to=item.assigned_to,
                        table=self.routing,
                    ),
                    created_by=WorkerRole.STRATEGIST.value,
                    priority=item.priority,
                    input=dict(item.input),
                    parent_task_id=parent.task_id,
                ),
            )
            child_ids.append(child.task_id)

        if child_ids:
            logger.info(
                "Spawned %d subtasks under %s (business=%s)",
                len(child_ids),
                parent.task_id,
                parent.business_id,
            )
        return child_ids
