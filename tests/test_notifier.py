from __future__ import annotations

import json
import logging
from pathlib import Path

import allure
import pytest

from agent_crew.orchestrator.models import TaskChange, TaskCreate, TaskStatus, TaskType
from agent_crew.orchestrator.notifier import (
    LocalChangeBus,
    LoggingChangeNotifier,
    RedisChangeNotifier,
    notify_safely,
)
from agent_crew.orchestrator.repository import TaskRepository

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Change Notifier"),
]


class _FakeRedis:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.published: list[tuple[str, str]] = []
        self.closed = False

    def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise ConnectionError("redis is down")
        self.published.append((channel, message))
        return 1

    def close(self) -> None:
        self.closed = True


def _change(status: TaskStatus = TaskStatus.RUNNING) -> TaskChange:
    return TaskChange(task_id="task-1", business_id="acme", new_status=status)


def test_redis_notifier_publishes_json_per_business_channel() -> None:
    client = _FakeRedis()
    notifier = RedisChangeNotifier(client, channel_prefix="crew:tasks")  # type: ignore[arg-type]

    notifier.publish(_change())
    notifier.close()

    channel, message = client.published[0]
    assert channel == "crew:tasks:acme"
    assert json.loads(message) == {
        "task_id": "task-1",
        "business_id": "acme",
        "new_status": "running",
    }
    assert client.closed


def test_local_bus_delivers_until_unsubscribed() -> None:
    bus = LocalChangeBus()
    received: list[TaskChange] = []
    unsubscribe = bus.subscribe(received.append)

    bus.publish(_change(TaskStatus.QUEUED))
    unsubscribe()
    bus.publish(_change(TaskStatus.RUNNING))

    assert [change.new_status for change in received] == [TaskStatus.QUEUED]


def test_local_bus_isolates_failing_subscribers(caplog: pytest.LogCaptureFixture) -> None:
    bus = LocalChangeBus()
    received: list[TaskChange] = []

    def _broken(_: TaskChange) -> None:
        raise RuntimeError("dashboard crashed")

    bus.subscribe(_broken)
    bus.subscribe(received.append)

    with caplog.at_level(logging.ERROR):
        bus.publish(_change())

    assert len(received) == 1
    assert "Change subscriber failed" in caplog.text


def test_logging_notifier_writes_change(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="agent_crew.orchestrator.notifier"):
        LoggingChangeNotifier().publish(_change(TaskStatus.REVIEW))

    assert "task-1" in caplog.text
    assert "review" in caplog.text


def test_broken_notifier_never_affects_the_store(tmp_path: Path) -> None:
    client = _FakeRedis(fail=True)
    repository = TaskRepository(
        tmp_path / "notify.db",
        notifier=RedisChangeNotifier(client),  # type: ignore[arg-type]
    )
    repository.init_schema()
    repository.upsert_business(business_id="acme", name="Acme")

    task = repository.enqueue_task(
        TaskCreate(business_id="acme", task_type=TaskType.RESEARCH, title="Survey"),
    )
    claimed = repository.claim_batch("acme", limit=1)
    repository.close()

    assert [item.task_id for item in claimed] == [task.task_id]
    assert client.published == []


def test_notify_safely_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        notify_safely(RedisChangeNotifier(_FakeRedis(fail=True)), _change())  # type: ignore[arg-type]

    assert "Change notification failed for task task-1" in caplog.text


def test_store_announces_every_transition(
    repository: TaskRepository,
    changes: list[TaskChange],
) -> None:
    task = repository.enqueue_task(
        TaskCreate(business_id="acme", task_type=TaskType.WRITE, title="Post"),
    )
    repository.claim_batch("acme", limit=1)
    repository.cancel_task(task_id=task.task_id)

    assert [change.new_status for change in changes] == [
        TaskStatus.QUEUED,
        TaskStatus.RUNNING,
        TaskStatus.CANCELLED,
    ]
    assert {change.business_id for change in changes} == {"acme"}
