"""Queue dispatcher: claim, route, invoke, classify and persist."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from agent_crew.orchestrator.contracts import WorkerRequest, read_plan_items
from agent_crew.orchestrator.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    RoutingError,
)
from agent_crew.orchestrator.invoker.base import WorkerInvoker
from agent_crew.orchestrator.models import (
    AutonomyLevel,
    Outcome,
    OutcomeKind,
    TaskStatus,
    TaskView,
    WorkerRole,
)
from agent_crew.orchestrator.repository import TaskRepository
from agent_crew.orchestrator.review import classify, should_auto_approve
from agent_crew.orchestrator.routing import RoutingTable, resolve_task_role
from agent_crew.orchestrator.spawner import SubtaskSpawner

logger = logging.getLogger(__name__)

_OUTCOME_STATUS = {
    OutcomeKind.COMPLETED: TaskStatus.COMPLETED,
    OutcomeKind.NEEDS_REVIEW: TaskStatus.REVIEW,
    OutcomeKind.FAILED: TaskStatus.FAILED,
}


@dataclass(slots=True)
class TaskDispatchDetail:
    """What happened to one claimed task."""

    task_id: str
    role: str | None
    status: str
    success: bool
    error: str | None = None
    discarded: bool = False
    spawned_task_ids: list[str] = field(default_factory=list)
    spawn_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "task_id": self.task_id,
            "role": self.role,
            "status": self.status,
            "success": self.success,
        }
        if self.error is not None:
            payload["error"] = self.error
        if self.discarded:
            payload["discarded"] = True
        if self.spawned_task_ids:
            payload["spawned_task_ids"] = list(self.spawned_task_ids)
        if self.spawn_error is not None:
            payload["spawn_error"] = self.spawn_error
        return payload


@dataclass(slots=True)
class DispatchCycleSummary:
    """Structured result of one dispatch cycle for a tenant."""

    business_id: str
    total: int = 0
    processed: int = 0
    failed: int = 0
    details: list[TaskDispatchDetail] = field(default_factory=list)

    def add(self, detail: TaskDispatchDetail) -> None:
        self.details.append(detail)
        if detail.success:
            self.processed += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "business_id": self.business_id,
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "details": [detail.to_dict() for detail in self.details],
        }


@dataclass(slots=True)
class DispatchLoopSummary:
    """Aggregate counters for the polling loop."""

    cycles: int = 0
    processed: int = 0
    failed: int = 0
    idle_cycles: int = 0
    aborted_cycles: int = 0


class QueueDispatcher:
    """Processes claimed tasks sequentially, isolating failures per task."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskRepository,
        invoker: WorkerInvoker,
        routing: RoutingTable | None = None,
        batch_size: int = 10,
        auto_approve_full_auto: bool = False,
        poll_interval_seconds: float = 5.0,
        spawner: SubtaskSpawner | None = None,
    ) -> None:
        self.repository = repository
        self.invoker = invoker
        self.routing = routing or RoutingTable()
        self.batch_size = batch_size
        self.auto_approve_full_auto = auto_approve_full_auto
        self.poll_interval_seconds = poll_interval_seconds
        self.spawner = spawner or SubtaskSpawner(repository, routing=self.routing)
        self._stop_requested = False

    def run_cycle(self, business_id: str, *, limit: int | None = None) -> DispatchCycleSummary:
        """Claim one bounded batch for a tenant and push it through the pipeline.

        Per-task errors end up as failed records and never abort siblings.
        ``PersistenceError`` is not per-task: it propagates and aborts the cycle.
        """

        business = self.repository.require_business(business_id)
        claimed = self.repository.claim_batch(
            business_id,
            limit=self.batch_size if limit is None else limit,
        )
        summary = DispatchCycleSummary(business_id=business_id, total=len(claimed))
        for task in claimed:
            summary.add(self._process_claimed(task, autonomy_level=business.autonomy_level))

        if summary.total:
            logger.info(
                "Dispatch cycle for %s: total=%d processed=%d failed=%d",
                business_id,
                summary.total,
                summary.processed,
                summary.failed,
            )
        else:
            logger.debug("Dispatch cycle for %s: queue empty", business_id)
        return summary

    def process_single(self, task_id: str) -> TaskDispatchDetail:
        """Force one queued task through the pipeline outside batch selection."""

        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        business = self.repository.require_business(task.business_id)
        claimed = self.repository.claim_task(task_id)
        return self._process_claimed(claimed, autonomy_level=business.autonomy_level)

    def run_loop(
        self,
        business_ids: Sequence[str],
        *,
        max_cycles: int | None = None,
        stop_when_idle: bool = False,
    ) -> DispatchLoopSummary:
        """Timer trigger: repeat dispatch cycles until stopped.

        One loop iteration runs a cycle per tenant. A store outage aborts only
        the current cycle; the loop keeps polling.
        """

        aggregate = DispatchLoopSummary()
        with self._signal_handlers():
            while not self._stop_requested:
                if max_cycles is not None and aggregate.cycles >= max_cycles:
                    break

                handled = 0
                for business_id in business_ids:
                    if self._stop_requested:
                        break
                    try:
                        summary = self.run_cycle(business_id)
                    except PersistenceError as error:
                        aggregate.aborted_cycles += 1
                        logger.error("Dispatch cycle for %s aborted: %s", business_id, error)  # noqa: TRY400
                        continue
                    handled += summary.total
                    aggregate.processed += summary.processed
                    aggregate.failed += summary.failed
                aggregate.cycles += 1

                if handled == 0:
                    aggregate.idle_cycles += 1
                    if stop_when_idle:
                        break
                if self.poll_interval_seconds > 0:
                    self._sleep_with_stop(self.poll_interval_seconds)
        return aggregate

    def request_stop(self) -> None:
        self._stop_requested = True

    def _process_claimed(
        self,
        task: TaskView,
        *,
        autonomy_level: AutonomyLevel,
    ) -> TaskDispatchDetail:
        try:
            return self._run_pipeline(task, autonomy_level=autonomy_level)
        except PersistenceError:
            raise
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected error while processing task %s", task.task_id)
            return self._finish(
                task,
                role=None,
                outcome=Outcome.failed(f"Unexpected dispatcher error: {error}"),
            )

    def _run_pipeline(
        self,
        task: TaskView,
        *,
        autonomy_level: AutonomyLevel,
    ) -> TaskDispatchDetail:
        try:
            role = resolve_task_role(task, table=self.routing)
        except RoutingError as error:
            logger.warning("Routing failed for task %s: %s", task.task_id, error)
            return self._finish(task, role=None, outcome=Outcome.failed(str(error)))

        if task.assigned_to != role.value:
            still_running = self.repository.assign_role(task_id=task.task_id, role=role)
        else:
            current = self.repository.get_task(task.task_id)
            still_running = current is not None and current.status == TaskStatus.RUNNING
        if not still_running:
            # Cancelled while waiting for its turn in the batch.
            return self._discarded(task, role_value=role.value, stage="worker call")

        result = self.invoker.invoke(
            WorkerRequest(
                role=role,
                action=task.task_type,
                business_id=task.business_id,
                task_id=task.task_id,
                input=task.input,
            ),
        )
        outcome = classify(role, result, autonomy_level)
        if outcome.kind == OutcomeKind.FAILED:
            logger.warning(
                "Worker %s failed task %s: %s",
                role.value,
                task.task_id,
                outcome.error_message,
            )

        detail = self._finish(task, role=role, outcome=outcome)
        if detail.discarded:
            return detail

        if should_auto_approve(outcome, autonomy_level, enabled=self.auto_approve_full_auto):
            try:
                self.repository.approve_task(task_id=task.task_id, actor="auto")
                detail.status = TaskStatus.APPROVED.value
            except InvalidTransitionError as error:
                logger.warning("Auto-approval skipped for task %s: %s", task.task_id, error)

        if role == WorkerRole.STRATEGIST and outcome.kind == OutcomeKind.COMPLETED:
            self._spawn_from_output(task, output=outcome.output or {}, detail=detail)
        return detail

    def _finish(
        self,
        task: TaskView,
        *,
        role: WorkerRole | None,
        outcome: Outcome,
    ) -> TaskDispatchDetail:
        role_value = role.value if role is not None else task.assigned_to
        success = outcome.kind != OutcomeKind.FAILED
        if self.repository.record_outcome(task_id=task.task_id, outcome=outcome):
            return TaskDispatchDetail(
                task_id=task.task_id,
                role=role_value,
                status=_OUTCOME_STATUS[outcome.kind].value,
                success=success,
                error=outcome.error_message,
            )

        # Cancelled (or otherwise moved) while the worker was running.
        return self._discarded(
            task,
            role_value=role_value,
            stage=f"{outcome.kind.value} outcome",
            error=outcome.error_message,
        )

    def _discarded(
        self,
        task: TaskView,
        *,
        role_value: str | None,
        stage: str,
        error: str | None = None,
    ) -> TaskDispatchDetail:
        """Detail for a task that left ``running`` outside the dispatcher.

        Counted as processed: the stored record is whatever the external
        action set, never ``failed`` by this cycle.
        """

        current = self.repository.get_task(task.task_id)
        current_status = current.status.value if current is not None else "missing"
        logger.warning(
            "Discarded %s for task %s: task is %s",
            stage,
            task.task_id,
            current_status,
        )
        return TaskDispatchDetail(
            task_id=task.task_id,
            role=role_value,
            status=current_status,
            success=True,
            error=error,
            discarded=True,
        )

    def _spawn_from_output(
        self,
        task: TaskView,
        *,
        output: dict[str, Any],
        detail: TaskDispatchDetail,
    ) -> None:
        try:
            items = read_plan_items(output)
        except (TypeError, ValueError) as error:
            logger.warning("Ignoring malformed plan from task %s: %s", task.task_id, error)
            detail.spawn_error = f"Malformed plan: {error}"
            return
        if not items:
            return
        try:
            detail.spawned_task_ids = self.spawner.spawn(task.task_id, items)
        except (NotFoundError, ValueError, TypeError) as error:
            logger.warning("Subtask spawning failed for task %s: %s", task.task_id, error)
            detail.spawn_error = str(error)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Received %s, stopping after the current task", name)
            self.request_stop()

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
