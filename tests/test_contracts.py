from __future__ import annotations

import allure
import pytest

from agent_crew.orchestrator.contracts import (
    WorkerRequest,
    parse_worker_response,
    read_plan_items,
)
from agent_crew.orchestrator.models import TaskType, WorkerRole

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Worker Contracts"),
]


def test_worker_request_payload_uses_wire_keys() -> None:
    request = WorkerRequest(
        role=WorkerRole.VISUAL_CREATOR,
        action="design",
        business_id="acme",
        task_id="t-1",
        input={"brief": "logo"},
    )

    assert request.to_payload() == {
        "role": "visual-creator",
        "action": "design",
        "businessId": "acme",
        "taskId": "t-1",
        "input": {"brief": "logo"},
    }


def test_parse_worker_response_variants() -> None:
    assert parse_worker_response({"success": True, "data": {"a": 1}}).data == {"a": 1}
    assert parse_worker_response({"success": True}).data == {}
    assert parse_worker_response({"success": True, "data": [1, 2]}).data == {"result": [1, 2]}

    failed = parse_worker_response({"success": False, "error": "quota exceeded"})
    assert not failed.success
    assert failed.error == "quota exceeded"


@pytest.mark.parametrize(
    "body",
    [[], {"data": {}}, {"success": "yes"}, {"success": False, "error": 42}],
)
def test_parse_worker_response_rejects_malformed_bodies(body: object) -> None:
    with pytest.raises(TypeError):
        parse_worker_response(body)


def test_read_phased_plan_stamps_phase_and_context() -> None:
    output = {
        "campaignId": "spring",
        "phases": [
            {
                "week": 1,
                "tasks": [
                    {
                        "type": "research",
                        "title": "Audience research",
                        "assignTo": "researcher",
                        "priority": 8,
                        "context": "focus on students",
                    },
                ],
            },
            {
                "week": 2,
                "tasks": [{"type": "write", "title": "Blog post", "description": "800 words"}],
            },
        ],
    }

    items = read_plan_items(output)

    assert [item.task_type for item in items] == [TaskType.RESEARCH, TaskType.WRITE]
    assert items[0].assigned_to == WorkerRole.RESEARCHER
    assert items[0].priority == 8
    assert items[0].input == {"campaignId": "spring", "phase": 1, "context": "focus on students"}
    assert items[1].assigned_to is None
    assert items[1].priority == 5
    assert items[1].description == "800 words"
    assert items[1].input == {"campaignId": "spring", "phase": 2}


def test_read_flat_plan_nested_under_plan_key() -> None:
    items = read_plan_items(
        {
            "plan": {
                "tasks": [
                    {
                        "type": "analyze",
                        "title": "KPIs",
                        "assigned_to": "analyst",
                        "input": {"metric": "ctr"},
                    },
                ],
            },
        },
    )

    assert len(items) == 1
    assert items[0].assigned_to == WorkerRole.ANALYST
    assert items[0].input == {"metric": "ctr"}


def test_output_without_plan_yields_no_items() -> None:
    assert read_plan_items({"summary": "nothing to spawn"}) == []


@pytest.mark.parametrize(
    ("output", "error"),
    [
        ({"tasks": {"type": "write"}}, TypeError),
        ({"tasks": [{"type": "dance", "title": "x"}]}, ValueError),
        ({"tasks": [{"type": "write", "title": ""}]}, ValueError),
        ({"tasks": [{"type": "write", "title": "x", "assignTo": "scout"}]}, ValueError),
        ({"tasks": [{"type": "write", "title": "x", "priority": 42}]}, ValueError),
        ({"tasks": [{"type": "write", "title": "x", "priority": "high"}]}, TypeError),
        ({"phases": [{"week": 1, "tasks": "all"}]}, TypeError),
    ],
)
def test_malformed_plans_are_rejected(output: dict, error: type[Exception]) -> None:
    with pytest.raises(error):
        read_plan_items(output)
