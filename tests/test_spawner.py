from __future__ import annotations

from collections.abc import Callable

import allure
import pytest

from agent_crew.orchestrator.contracts import PlanItem
from agent_crew.orchestrator.errors import NotFoundError
from agent_crew.orchestrator.models import TaskStatus, TaskType, TaskView, WorkerRole
from agent_crew.orchestrator.repository import TaskRepository
from agent_crew.orchestrator.spawner import SubtaskSpawner

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Subtask Spawner"),
]


def test_spawn_creates_children_under_parent(
    repository: TaskRepository,
    enqueue: Callable[..., TaskView],
) -> None:
    parent = enqueue(TaskType.STRATEGY, assigned_to=WorkerRole.STRATEGIST)
    spawner = SubtaskSpawner(repository)

    child_ids = spawner.spawn(
        parent.task_id,
        [
            PlanItem(task_type=TaskType.RESEARCH, title="Research", priority=8),
            PlanItem(
                task_type=TaskType.WRITE,
                title="Draft",
                assigned_to=WorkerRole.ANALYST,
                input={"phase": 1},
            ),
        ],
    )

    assert len(child_ids) == 2
    research, draft = (repository.get_task(child_id) for child_id in child_ids)
    for child in (research, draft):
        assert child.business_id == parent.business_id
        assert child.parent_task_id == parent.task_id
        assert child.created_by == "strategist"
        assert child.status == TaskStatus.QUEUED
    assert research.assigned_to == "researcher"
    assert research.priority == 8
    assert draft.assigned_to == "analyst"
    assert draft.input == {"phase": 1}
    assert repository.get_task_details(task_id=parent.task_id).child_task_ids == child_ids


def test_spawn_with_empty_plan_creates_nothing(
    repository: TaskRepository,
    enqueue: Callable[..., TaskView],
) -> None:
    parent = enqueue(TaskType.STRATEGY)

    assert SubtaskSpawner(repository).spawn(parent.task_id, []) == []
    assert repository.list_tasks("acme", parent_task_id=parent.task_id) == []


def test_spawn_requires_existing_parent(repository: TaskRepository) -> None:
    with pytest.raises(NotFoundError, match="Parent task not found"):
        SubtaskSpawner(repository).spawn(
            "missing",
            [PlanItem(task_type=TaskType.WRITE, title="Orphan")],
        )
