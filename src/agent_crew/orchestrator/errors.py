"""Error taxonomy for the orchestration core."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for all orchestration errors."""


class NotFoundError(OrchestratorError):
    """Referenced task or business does not exist in the caller's scope."""


class RoutingError(OrchestratorError):
    """No worker role can be resolved for a task; a configuration bug, never retried."""


class InvocationError(OrchestratorError):
    """Worker call failed or returned ``success: false``."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(OrchestratorError):
    """Task store is unavailable; aborts the whole dispatch cycle."""


class InvalidTransitionError(OrchestratorError):
    """Requested status change has no edge from the task's current state."""

    def __init__(self, message: str, *, task_id: str, status: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.status = status
