"""JSON contracts at the worker boundary: requests, responses and plans."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from agent_crew.orchestrator.models import TaskType, WorkerRole

DEFAULT_PLAN_PRIORITY = 5


@dataclass(slots=True)
class WorkerRequest:
    """One worker call: which role, which action, for whom and with what input."""

    role: WorkerRole
    action: str
    business_id: str
    task_id: str
    input: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "action": self.action,
            "businessId": self.business_id,
            "taskId": self.task_id,
            "input": self.input,
        }


@dataclass(slots=True)
class InvocationResult:
    """Worker response: ``data`` on success, ``error`` otherwise."""

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    status_code: int | None = None

    @classmethod
    def ok(cls, data: dict[str, Any] | None = None) -> InvocationResult:
        return cls(success=True, data=data or {})

    @classmethod
    def fail(cls, error: str, *, status_code: int | None = None) -> InvocationResult:
        return cls(success=False, error=error, status_code=status_code)


@dataclass(slots=True)
class PlanItem:
    """One child task proposed by a strategist plan."""

    task_type: TaskType
    title: str
    description: str | None = None
    assigned_to: WorkerRole | None = None
    priority: int = DEFAULT_PLAN_PRIORITY
    input: dict[str, Any] = field(default_factory=dict)


def parse_worker_response(raw: Any) -> InvocationResult:
    """Validate a decoded ``{success, data?, error?}`` body."""

    if not isinstance(raw, dict):
        raise TypeError("worker response must be a JSON object")
    success = raw.get("success")
    if not isinstance(success, bool):
        raise TypeError("worker response.success must be a boolean")
    data = raw.get("data")
    error = raw.get("error")
    if error is not None and not isinstance(error, str):
        raise TypeError("worker response.error must be a string when provided")

    if not success:
        return InvocationResult.fail(error or "Worker reported failure without a message")
    if data is None:
        return InvocationResult.ok({})
    if not isinstance(data, dict):
        # Scalar/array payloads are wrapped so task output stays a JSON object.
        return InvocationResult.ok({"result": data})
    return InvocationResult.ok(data)


def read_plan_items(output: dict[str, Any]) -> list[PlanItem]:
    """Extract child task definitions from strategist output.

    Accepts a flat ``{"tasks": [...]}`` plan or a phased
    ``{"phases": [{"week": n, "tasks": [...]}]}`` plan (optionally nested under
    ``"plan"``). Output without either key carries no plan.
    """

    plan = output.get("plan", output)
    if not isinstance(plan, dict):
        raise TypeError("plan must be a JSON object")

    shared: dict[str, Any] = {}
    campaign_id = plan.get("campaignId", output.get("campaignId"))
    if campaign_id is not None:
        shared["campaignId"] = campaign_id

    items: list[PlanItem] = []
    if "phases" in plan:
        phases = plan["phases"]
        if not isinstance(phases, list):
            raise TypeError("plan.phases must be an array")
        for phase in phases:
            if not isinstance(phase, dict):
                raise TypeError("plan phase must be an object")
            phase_tasks = phase.get("tasks", [])
            if not isinstance(phase_tasks, list):
                raise TypeError("plan phase tasks must be an array")
            stamp = dict(shared)
            if phase.get("week") is not None:
                stamp["phase"] = phase["week"]
            items.extend(_read_plan_item(item, stamp=stamp) for item in phase_tasks)
    elif "tasks" in plan:
        tasks = plan["tasks"]
        if not isinstance(tasks, list):
            raise TypeError("plan.tasks must be an array")
        items.extend(_read_plan_item(item, stamp=shared) for item in tasks)
    return items


def _read_plan_item(raw: Any, *, stamp: dict[str, Any]) -> PlanItem:
    if not isinstance(raw, dict):
        raise TypeError("plan task must be an object")

    type_raw = raw.get("type")
    if not isinstance(type_raw, str) or not type_raw.strip():
        raise ValueError("plan task.type must be a non-empty string")
    try:
        task_type = TaskType(type_raw.strip().lower())
    except ValueError as error:
        raise ValueError(f"plan task.type is not a known task type: {type_raw!r}") from error

    title = raw.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValueError("plan task.title must be a non-empty string")

    description = raw.get("description")
    if description is not None and not isinstance(description, str):
        raise TypeError("plan task.description must be a string when provided")

    role_raw = raw.get("assignTo", raw.get("assigned_to"))
    assigned_to: WorkerRole | None = None
    if role_raw is not None:
        if not isinstance(role_raw, str):
            raise TypeError("plan task.assignTo must be a string when provided")
        try:
            assigned_to = WorkerRole(role_raw.strip().lower())
        except ValueError as error:
            raise ValueError(f"plan task.assignTo is not a known role: {role_raw!r}") from error

    priority = raw.get("priority", DEFAULT_PLAN_PRIORITY)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise TypeError("plan task.priority must be an integer")
    if not 1 <= priority <= 10:  # noqa: PLR2004
        raise ValueError(f"plan task.priority must be within [1, 10], got {priority}")

    task_input = raw.get("input", {})
    if not isinstance(task_input, dict):
        raise TypeError("plan task.input must be an object")
    child_input = {**stamp, **task_input}
    if raw.get("context") is not None:
        child_input["context"] = raw["context"]

    return PlanItem(
        task_type=task_type,
        title=title.strip(),
        description=description,
        assigned_to=assigned_to,
        priority=priority,
        input=child_input,
    )
