"""Local deterministic worker for demos and integration tests."""

from __future__ import annotations

from collections.abc import Iterable

from agent_crew.orchestrator.contracts import InvocationResult, WorkerRequest
from agent_crew.orchestrator.models import WorkerRole


class EchoWorkerInvoker:
    """Echoes the task input back as output.

    A strategist echoes ``input["plan"]`` as its plan, which lets the subtask
    spawner run end to end without a real worker. Failures can be scripted per
    task id, per role, or with ``input["simulate_failure"]``.
    """

    def __init__(
        self,
        *,
        fail_task_ids: Iterable[str] = (),
        fail_roles: Iterable[WorkerRole] = (),
        error_message: str = "Echo worker failure",
    ) -> None:
        self._fail_task_ids = set(fail_task_ids)
        self._fail_roles = set(fail_roles)
        self._error_message = error_message
        self.calls: list[WorkerRequest] = []

    def invoke(self, request: WorkerRequest) -> InvocationResult:
        self.calls.append(request)
        simulated = request.input.get("simulate_failure")
        if simulated:
            message = simulated if isinstance(simulated, str) else self._error_message
            return InvocationResult.fail(message)
        if request.task_id in self._fail_task_ids or request.role in self._fail_roles:
            return InvocationResult.fail(self._error_message)

        data: dict[str, object] = {
            "role": request.role.value,
            "action": request.action,
            "echo": request.input,
        }
        plan = request.input.get("plan")
        if request.role == WorkerRole.STRATEGIST and isinstance(plan, dict):
            data["plan"] = plan
        return InvocationResult.ok(data)
