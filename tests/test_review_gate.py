from __future__ import annotations

import allure
import pytest

from agent_crew.orchestrator.contracts import InvocationResult
from agent_crew.orchestrator.models import AutonomyLevel, Outcome, OutcomeKind, WorkerRole
from agent_crew.orchestrator.review import classify, should_auto_approve

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Review Gate"),
]


@pytest.mark.parametrize("autonomy", list(AutonomyLevel))
@pytest.mark.parametrize("role", [WorkerRole.WRITER, WorkerRole.VISUAL_CREATOR])
def test_content_roles_always_need_review(role: WorkerRole, autonomy: AutonomyLevel) -> None:
    outcome = classify(role, InvocationResult.ok({"draft": "text"}), autonomy)

    assert outcome == Outcome.needs_review({"draft": "text"})


@pytest.mark.parametrize("autonomy", list(AutonomyLevel))
@pytest.mark.parametrize(
    "role",
    [
        WorkerRole.STRATEGIST,
        WorkerRole.RESEARCHER,
        WorkerRole.WATCHER,
        WorkerRole.PUBLISHER,
        WorkerRole.ENGAGER,
        WorkerRole.ANALYST,
    ],
)
def test_other_roles_complete_regardless_of_autonomy(
    role: WorkerRole,
    autonomy: AutonomyLevel,
) -> None:
    outcome = classify(role, InvocationResult.ok({"report": 1}), autonomy)

    assert outcome.kind == OutcomeKind.COMPLETED
    assert outcome.output == {"report": 1}


def test_invocation_failure_is_failed_outcome() -> None:
    outcome = classify(
        WorkerRole.WRITER,
        InvocationResult.fail("HTTP 500"),
        AutonomyLevel.FULL_AUTO,
    )

    assert outcome == Outcome.failed("HTTP 500")


def test_auto_approve_only_for_enabled_full_auto_reviews() -> None:
    review = Outcome.needs_review({})

    assert should_auto_approve(review, AutonomyLevel.FULL_AUTO, enabled=True)
    assert not should_auto_approve(review, AutonomyLevel.FULL_AUTO, enabled=False)
    assert not should_auto_approve(review, AutonomyLevel.SEMI_AUTO, enabled=True)
    assert not should_auto_approve(Outcome.completed({}), AutonomyLevel.FULL_AUTO, enabled=True)
