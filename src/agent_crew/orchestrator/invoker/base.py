"""Invoker interface for worker calls."""

from __future__ import annotations

from typing import Protocol

from agent_crew.orchestrator.contracts import InvocationResult, WorkerRequest


class WorkerInvoker(Protocol):
    """Protocol implemented by worker invokers.

    Worker failures come back as ``InvocationResult(success=False)``; an
    invoker raises only for programming errors.
    """

    def invoke(self, request: WorkerRequest) -> InvocationResult:
        """Call one worker and return its result."""
