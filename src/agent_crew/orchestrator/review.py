"""Review Gate: decide whether finished work is final or needs sign-off."""

from __future__ import annotations

from agent_crew.orchestrator.contracts import InvocationResult
from agent_crew.orchestrator.models import (
    CONTENT_PRODUCING_ROLES,
    AutonomyLevel,
    Outcome,
    OutcomeKind,
    WorkerRole,
)


def classify(
    role: WorkerRole,
    result: InvocationResult,
    autonomy_level: AutonomyLevel,
) -> Outcome:
    """Map a worker result to the outcome the store should persist.

    Content from writer/visual-creator always goes to review; every other role
    completes directly. ``autonomy_level`` does not change this mapping, only
    the optional auto-approval that may follow it.
    """

    del autonomy_level
    if not result.success:
        return Outcome.failed(result.error or "Worker call failed")
    output = result.data or {}
    if role in CONTENT_PRODUCING_ROLES:
        return Outcome.needs_review(output)
    return Outcome.completed(output)


def should_auto_approve(
    outcome: Outcome,
    autonomy_level: AutonomyLevel,
    *,
    enabled: bool,
) -> bool:
    """Auto-approval applies only to review outcomes of full-auto businesses."""

    return (
        enabled
        and outcome.kind == OutcomeKind.NEEDS_REVIEW
        and autonomy_level == AutonomyLevel.FULL_AUTO
    )
