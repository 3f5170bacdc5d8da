from __future__ import annotations

import allure
import pytest

from agent_crew.config import OrchestratorSettings
from agent_crew.orchestrator.errors import RoutingError
from agent_crew.orchestrator.models import TaskType, WorkerRole
from agent_crew.orchestrator.routing import (
    DEFAULT_TASK_ROLE_MAP,
    RoutingTable,
    resolve_role,
    resolve_role_for_enqueue,
)

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Agent Router"),
]


def test_write_task_resolves_to_writer_every_time() -> None:
    table = RoutingTable()

    roles = {resolve_role(task_type="write", assigned_to=None, table=table) for _ in range(5)}

    assert roles == {WorkerRole.WRITER}


def test_default_table_covers_every_task_type() -> None:
    assert set(DEFAULT_TASK_ROLE_MAP) == set(TaskType)
    assert DEFAULT_TASK_ROLE_MAP[TaskType.DESIGN] == WorkerRole.VISUAL_CREATOR
    assert DEFAULT_TASK_ROLE_MAP[TaskType.INTEL] == WorkerRole.WATCHER


def test_explicit_assignment_wins_over_table() -> None:
    role = resolve_role(task_type="write", assigned_to="analyst", table=RoutingTable())

    assert role == WorkerRole.ANALYST


def test_unknown_assigned_role_is_a_routing_error() -> None:
    with pytest.raises(RoutingError, match="Unknown worker role 'scout'"):
        resolve_role(task_type="research", assigned_to="scout", table=RoutingTable())


def test_missing_table_entry_is_a_routing_error() -> None:
    table = RoutingTable(task_role_map={"write": WorkerRole.WRITER})

    with pytest.raises(RoutingError, match="No worker role configured for task type 'publish'"):
        resolve_role(task_type="publish", assigned_to=None, table=table)


def test_settings_overrides_are_applied_on_top_of_defaults() -> None:
    table = RoutingTable.from_settings(
        OrchestratorSettings(task_role_overrides={TaskType.REVIEW: WorkerRole.ANALYST}),
    )

    assert table.role_for_type("review") == WorkerRole.ANALYST
    assert table.role_for_type("strategy") == WorkerRole.STRATEGIST


def test_enqueue_resolution_returns_none_when_table_has_no_entry() -> None:
    table = RoutingTable(task_role_map={})

    assert resolve_role_for_enqueue(task_type=TaskType.WRITE, assigned_to=None, table=table) is None
    assert (
        resolve_role_for_enqueue(
            task_type=TaskType.WRITE,
            assigned_to=WorkerRole.PUBLISHER,
            table=table,
        )
        == WorkerRole.PUBLISHER
    )
