"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from agent_crew.orchestrator.models import (
    TaskChange,
    TaskCreate,
    TaskType,
    TaskView,
    WorkerRole,
)
from agent_crew.orchestrator.notifier import LocalChangeBus
from agent_crew.orchestrator.repository import TaskRepository

BUSINESS_ID = "acme"


@pytest.fixture()
def change_bus() -> LocalChangeBus:
    return LocalChangeBus()


@pytest.fixture()
def changes(change_bus: LocalChangeBus) -> list[TaskChange]:
    received: list[TaskChange] = []
    change_bus.subscribe(received.append)
    return received


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "agent-crew.db"


@pytest.fixture()
def repository(db_path: Path, change_bus: LocalChangeBus) -> Iterator[TaskRepository]:
    repository = TaskRepository(db_path, notifier=change_bus)
    repository.init_schema()
    repository.upsert_business(business_id=BUSINESS_ID, name="Acme Coffee")
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def enqueue(repository: TaskRepository) -> Callable[..., TaskView]:
    """Enqueue a task in the default business with terse overrides."""

    def _enqueue(
        task_type: TaskType = TaskType.RESEARCH,
        *,
        title: str | None = None,
        priority: int = 5,
        assigned_to: WorkerRole | None = None,
        input: dict[str, Any] | None = None,  # noqa: A002
        business_id: str = BUSINESS_ID,
        parent_task_id: str | None = None,
    ) -> TaskView:
        return repository.enqueue_task(
            TaskCreate(
                business_id=business_id,
                task_type=task_type,
                title=title or f"{task_type.value} task",
                assigned_to=assigned_to,
                priority=priority,
                input=input or {},
                parent_task_id=parent_task_id,
            ),
        )

    return _enqueue



@pytest.fixture(autouse=True)
def _clean_agent_crew_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("AGENT_CREW_"):
            monkeypatch.delenv(name, raising=False)
