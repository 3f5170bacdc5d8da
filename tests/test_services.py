from __future__ import annotations

import allure
import pytest

from agent_crew.orchestrator.dispatcher import QueueDispatcher
from agent_crew.orchestrator.invoker import EchoWorkerInvoker
from agent_crew.orchestrator.repository import TaskRepository
from agent_crew.orchestrator.routing import RoutingTable
from agent_crew.orchestrator.services import EnqueueTask, OrchestratorService

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Control Plane"),
]


@pytest.fixture()
def invoker() -> EchoWorkerInvoker:
    return EchoWorkerInvoker()


@pytest.fixture()
def service(repository: TaskRepository, invoker: EchoWorkerInvoker) -> OrchestratorService:
    dispatcher = QueueDispatcher(repository=repository, invoker=invoker, poll_interval_seconds=0)
    return OrchestratorService(repository=repository, dispatcher=dispatcher)


def test_enqueue_freezes_role_from_type_table(service: OrchestratorService) -> None:
    result = service.enqueue_task(
        EnqueueTask(business_id="acme", task_type="design", title="Hero image"),
    )

    assert result.success
    assert result.data["assigned_to"] == "visual-creator"
    assert result.data["status"] == "queued"


def test_enqueue_without_table_entry_defers_routing(repository: TaskRepository) -> None:
    dispatcher = QueueDispatcher(
        repository=repository,
        invoker=EchoWorkerInvoker(),
        routing=RoutingTable(task_role_map={}),
    )
    service = OrchestratorService(repository=repository, dispatcher=dispatcher)

    result = service.enqueue_task(EnqueueTask(business_id="acme", task_type="engage", title="DMs"))

    assert result.success
    assert result.data["assigned_to"] is None


@pytest.mark.parametrize(
    ("command", "message"),
    [
        (EnqueueTask(business_id="acme", task_type="dance", title="x"), "Unknown task type"),
        (
            EnqueueTask(business_id="acme", task_type="write", title="x", assigned_to="scout"),
            "Unknown worker role",
        ),
        (EnqueueTask(business_id="acme", task_type="write", title="x", priority=12), "priority"),
        (EnqueueTask(business_id="ghost", task_type="write", title="x"), "Business not found"),
    ],
)
def test_enqueue_failures_are_reported_not_raised(
    service: OrchestratorService,
    command: EnqueueTask,
    message: str,
) -> None:
    result = service.enqueue_task(command)

    assert not result.success
    assert message in result.error


def test_process_queue_reports_structured_summary(
    service: OrchestratorService,
    invoker: EchoWorkerInvoker,
) -> None:
    ok = service.enqueue_task(EnqueueTask(business_id="acme", task_type="research", title="a"))
    bad = service.enqueue_task(
        EnqueueTask(
            business_id="acme",
            task_type="research",
            title="b",
            input={"simulate_failure": "worker returned 500"},
        ),
    )

    result = service.process_queue("acme")

    assert result.success
    assert result.data["total"] == 2
    assert result.data["processed"] == 1
    assert result.data["failed"] == 1
    by_id = {detail["task_id"]: detail for detail in result.data["details"]}
    assert by_id[ok.data["id"]]["status"] == "completed"
    assert by_id[bad.data["id"]]["error"] == "worker returned 500"
    assert len(invoker.calls) == 2


def test_process_queue_unknown_business_is_non_success(service: OrchestratorService) -> None:
    result = service.process_queue("ghost")

    assert not result.success
    assert "Business not found" in result.error


def test_process_single_and_queue_status(service: OrchestratorService) -> None:
    writer = service.enqueue_task(EnqueueTask(business_id="acme", task_type="write", title="w"))
    service.enqueue_task(EnqueueTask(business_id="acme", task_type="analyze", title="a"))

    single = service.process_single(writer.data["id"])
    status = service.get_queue_status("acme")

    assert single.success
    assert single.data["status"] == "review"
    assert status.success
    assert status.data["queued"] == 1
    assert status.data["running"] == 0
    assert status.data["review"] == 1
    assert status.data["by_role"] == {"analyst": 1, "writer": 1}


def test_process_single_on_non_queued_task_fails_cleanly(service: OrchestratorService) -> None:
    task = service.enqueue_task(EnqueueTask(business_id="acme", task_type="write", title="w"))
    service.cancel(task.data["id"])

    result = service.process_single(task.data["id"])

    assert not result.success
    assert "status=queued" in result.error


def test_review_actions_through_control_plane(service: OrchestratorService) -> None:
    first = service.enqueue_task(EnqueueTask(business_id="acme", task_type="write", title="1"))
    second = service.enqueue_task(EnqueueTask(business_id="acme", task_type="write", title="2"))
    service.process_queue("acme")

    approved = service.approve(first.data["id"])
    rejected = service.reject(second.data["id"], "tone mismatch")
    published = service.complete_approved(first.data["id"], output={"post_id": "p-1"})
    again = service.approve(second.data["id"])

    assert approved.data["status"] == "approved"
    assert rejected.data["status"] == "failed"
    assert rejected.data["error_message"] == "tone mismatch"
    assert published.data["status"] == "completed"
    assert published.data["output"] == {"post_id": "p-1"}
    assert not again.success
    assert "status=failed" in again.error

    requeued = service.requeue(second.data["id"])
    assert requeued.data["status"] == "queued"


def test_spawn_subtasks_from_explicit_plan(service: OrchestratorService) -> None:
    parent = service.enqueue_task(
        EnqueueTask(business_id="acme", task_type="strategy", title="Q3 campaign"),
    )

    result = service.spawn_subtasks(
        parent.data["id"],
        {"tasks": [{"type": "publish", "title": "Ship it"}, {"type": "engage", "title": "Reply"}]},
    )

    assert result.success
    assert len(result.data["task_ids"]) == 2
    malformed = service.spawn_subtasks(parent.data["id"], {"tasks": [{"title": "no type"}]})
    assert not malformed.success


def test_role_activity_reports_every_role(service: OrchestratorService) -> None:
    service.enqueue_task(EnqueueTask(business_id="acme", task_type="publish", title="p"))

    result = service.role_activity("acme")

    assert result.success
    assert result.data["publisher"] == "active"
    assert result.data["strategist"] == "idle"
    assert len(result.data) == 8


def test_register_business_rejects_unknown_autonomy(service: OrchestratorService) -> None:
    result = service.register_business(business_id="x", name="X", autonomy_level="reckless")

    assert not result.success
    assert service.register_business(business_id="x", name="X", autonomy_level="semi-auto").success
