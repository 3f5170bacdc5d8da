"""Worker invoker implementations."""

from agent_crew.orchestrator.invoker.base import WorkerInvoker
from agent_crew.orchestrator.invoker.echo import EchoWorkerInvoker
from agent_crew.orchestrator.invoker.http_invoker import HttpWorkerInvoker

__all__ = [
    "EchoWorkerInvoker",
    "HttpWorkerInvoker",
    "WorkerInvoker",
]
