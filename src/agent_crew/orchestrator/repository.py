"""Persistent task store backed by SQLModel + SQLite.

Every status change is a conditional ``UPDATE ... WHERE status = <expected>``:
the row count tells whether this caller won the transition. Concurrent
dispatch cycles therefore never both move a task out of ``queued``, and a
late worker result never overwrites a task that was cancelled meanwhile.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from agent_crew.orchestrator.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
)
from agent_crew.orchestrator.models import (
    CANCELLABLE_STATUSES,
    REQUEUEABLE_STATUSES,
    AutonomyLevel,
    BusinessView,
    Outcome,
    OutcomeKind,
    QueueStatus,
    RoleState,
    TaskChange,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
    WorkerRole,
    can_transition,
)
from agent_crew.orchestrator.notifier import ChangeNotifier, NullChangeNotifier, notify_safely
from agent_crew.storage.alembic_runner import upgrade_head
from agent_crew.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from agent_crew.storage.sqlmodel_models import Business, Task, TaskEvent

MIN_PRIORITY = 1
MAX_PRIORITY = 10
_ACTIVE_STATUSES = (TaskStatus.QUEUED, TaskStatus.RUNNING, TaskStatus.REVIEW)
_PENDING_STATUSES = (TaskStatus.QUEUED, TaskStatus.REVIEW, TaskStatus.APPROVED)


class TaskRepository:
    """Task store facade: enqueue, atomic claiming, outcomes and review actions."""

    def __init__(
        self,
        db_path: Path,
        *,
        notifier: ChangeNotifier | None = None,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        self.db_path = db_path
        self.notifier: ChangeNotifier = notifier or NullChangeNotifier()
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as error:
            raise PersistenceError(f"Schema migration failed: {error}") from error

    # Businesses

    def upsert_business(
        self,
        *,
        business_id: str,
        name: str,
        autonomy_level: AutonomyLevel = AutonomyLevel.SUPERVISED,
    ) -> BusinessView:
        """Create or update a tenant record."""

        if not business_id.strip():
            raise ValueError("business_id must be a non-empty string")
        now = utc_now()
        with self._session() as session:
            row = session.exec(
                select(Business).where(Business.business_id == business_id),
            ).one_or_none()
            if row is None:
                row = Business(
                    business_id=business_id,
                    name=name,
                    autonomy_level=autonomy_level.value,
                    created_at=now,
                    updated_at=now,
                )
            else:
                row.name = name
                row.autonomy_level = autonomy_level.value
                row.updated_at = now
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_business_view(row)

    def get_business(self, business_id: str) -> BusinessView | None:
        with self._session() as session:
            row = session.exec(
                select(Business).where(Business.business_id == business_id),
            ).one_or_none()
            return _to_business_view(row) if row is not None else None

    def require_business(self, business_id: str) -> BusinessView:
        business = self.get_business(business_id)
        if business is None:
            raise NotFoundError(f"Business not found: {business_id}")
        return business

    # Enqueue

    def enqueue_task(self, payload: TaskCreate) -> TaskView:
        """Create a queued task."""

        if not MIN_PRIORITY <= payload.priority <= MAX_PRIORITY:
            raise ValueError(
                f"priority must be within [{MIN_PRIORITY}, {MAX_PRIORITY}], "
                f"got {payload.priority}",
            )
        if not payload.title.strip():
            raise ValueError("title must be a non-empty string")
        if not isinstance(payload.input, dict):
            raise TypeError("task input must be a JSON object")

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with self._session() as session:
            business = session.exec(
                select(Business).where(Business.business_id == payload.business_id),
            ).one_or_none()
            if business is None:
                raise NotFoundError(f"Business not found: {payload.business_id}")
            if payload.parent_task_id is not None:
                parent = session.exec(
                    select(Task).where(
                        Task.task_id == payload.parent_task_id,
                        Task.business_id == payload.business_id,
                    ),
                ).one_or_none()
                if parent is None:
                    raise NotFoundError(
                        f"Parent task not found in business {payload.business_id}: "
                        f"{payload.parent_task_id}",
                    )

            row = Task(
                task_id=task_id,
                business_id=payload.business_id,
                parent_task_id=payload.parent_task_id,
                task_type=payload.task_type.value,
                title=payload.title,
                description=payload.description,
                assigned_to=payload.assigned_to.value if payload.assigned_to else None,
                created_by=payload.created_by,
                priority=payload.priority,
                status=TaskStatus.QUEUED.value,
                input_json=_dump_json(payload.input),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                business_id=payload.business_id,
                event_type="enqueued",
                status_from=None,
                status_to=TaskStatus.QUEUED,
                details={
                    "task_type": payload.task_type.value,
                    "priority": payload.priority,
                    "created_by": payload.created_by,
                    "parent_task_id": payload.parent_task_id,
                },
            )
            session.commit()
            session.refresh(row)
            view = _to_task_view(row)

        notify_safely(
            self.notifier,
            TaskChange(task_id=view.task_id, business_id=view.business_id, new_status=view.status),
        )
        return view

    # Claiming

    def claim_batch(self, business_id: str, *, limit: int) -> list[TaskView]:
        """Atomically move up to ``limit`` queued tasks to running.

        Returns only the tasks this caller won, ordered by priority desc then
        creation time asc. Candidates lost to a concurrent claimer are skipped
        and the batch is refilled from the remaining queue.
        """

        if limit <= 0:
            return []

        claimed: list[TaskView] = []
        attempted: set[str] = set()
        while len(claimed) < limit:
            with self._session() as session:
                statement = (
                    select(Task.task_id)
                    .where(
                        Task.business_id == business_id,
                        Task.status == TaskStatus.QUEUED.value,
                    )
                    .order_by(col(Task.priority).desc(), col(Task.created_at).asc())
                    .limit(limit - len(claimed))
                )
                if attempted:
                    statement = statement.where(col(Task.task_id).not_in(attempted))
                candidate_ids = list(session.exec(statement).all())
            if not candidate_ids:
                break

            for candidate_id in candidate_ids:
                attempted.add(candidate_id)
                task = self._transition(
                    task_id=candidate_id,
                    status_from=TaskStatus.QUEUED,
                    status_to=TaskStatus.RUNNING,
                    values={"started_at": to_db_datetime(utc_now())},
                    event_type="claimed",
                    details={"mode": "batch"},
                )
                if task is not None:
                    claimed.append(task)

        claimed.sort(key=lambda task: (-task.priority, task.created_at))
        return claimed

    def claim_task(self, task_id: str) -> TaskView:
        """Claim one specific queued task, bypassing batch selection."""

        current = self.get_task(task_id)
        if current is None:
            raise NotFoundError(f"Task not found: {task_id}")
        if current.status != TaskStatus.QUEUED:
            raise InvalidTransitionError(
                f"Task can only be claimed from status=queued, got {current.status.value}",
                task_id=task_id,
                status=current.status.value,
            )
        claimed = self._transition(
            task_id=task_id,
            status_from=TaskStatus.QUEUED,
            status_to=TaskStatus.RUNNING,
            values={"started_at": to_db_datetime(utc_now())},
            event_type="claimed",
            details={"mode": "single"},
        )
        if claimed is None:
            raise InvalidTransitionError(
                f"Task was claimed concurrently (task_id={task_id}).",
                task_id=task_id,
            )
        return claimed

    def assign_role(self, *, task_id: str, role: WorkerRole) -> bool:
        """Persist a dispatch-time role resolution on a running task."""

        now = to_db_datetime(utc_now())
        with self._session() as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == TaskStatus.RUNNING.value,
                )
                .values(assigned_to=role.value, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            row = session.exec(select(Task).where(Task.task_id == task_id)).one()
            business_id = row.business_id
            self._add_event(
                session=session,
                task_id=task_id,
                business_id=business_id,
                event_type="role_resolved",
                status_from=TaskStatus.RUNNING,
                status_to=TaskStatus.RUNNING,
                details={"role": role.value},
            )
            session.commit()

        notify_safely(
            self.notifier,
            TaskChange(task_id=task_id, business_id=business_id, new_status=TaskStatus.RUNNING),
        )
        return True

    # Outcomes

    def record_outcome(self, *, task_id: str, outcome: Outcome) -> bool:
        """Persist a Review Gate outcome for a running task.

        Returns False (and changes nothing) when the task is no longer running,
        e.g. it was cancelled while the worker call was in flight.
        """

        now = to_db_datetime(utc_now())
        if outcome.kind == OutcomeKind.COMPLETED:
            view = self._transition(
                task_id=task_id,
                status_from=TaskStatus.RUNNING,
                status_to=TaskStatus.COMPLETED,
                values={"output_json": _dump_json(outcome.output or {}), "completed_at": now},
                event_type="completed",
            )
        elif outcome.kind == OutcomeKind.NEEDS_REVIEW:
            view = self._transition(
                task_id=task_id,
                status_from=TaskStatus.RUNNING,
                status_to=TaskStatus.REVIEW,
                values={"output_json": _dump_json(outcome.output or {})},
                event_type="submitted_for_review",
            )
        else:
            error_message = outcome.error_message or "Task failed."
            view = self._transition(
                task_id=task_id,
                status_from=TaskStatus.RUNNING,
                status_to=TaskStatus.FAILED,
                values={"error_message": error_message, "completed_at": now},
                event_type="failed",
                details={"error_message": error_message},
            )
        return view is not None

    # Explicit actions

    def approve_task(self, *, task_id: str, actor: str = "human") -> TaskView:
        """Approve a task waiting in review."""

        return self._explicit_transition(
            task_id=task_id,
            allowed_from=frozenset({TaskStatus.REVIEW}),
            status_to=TaskStatus.APPROVED,
            values={},
            event_type="approved",
            details={"actor": actor},
            action="approved",
        )

    def reject_task(self, *, task_id: str, reason: str, actor: str = "human") -> TaskView:
        """Reject a task waiting in review; it becomes failed with the reason."""

        if not reason.strip():
            raise ValueError("rejection reason must be a non-empty string")
        return self._explicit_transition(
            task_id=task_id,
            allowed_from=frozenset({TaskStatus.REVIEW}),
            status_to=TaskStatus.FAILED,
            values={"error_message": reason, "completed_at": to_db_datetime(utc_now())},
            event_type="rejected",
            details={"actor": actor, "reason": reason},
            action="rejected",
        )

    def complete_approved_task(
        self,
        *,
        task_id: str,
        output: dict[str, Any] | None = None,
    ) -> TaskView:
        """Close an approved task once its downstream publish cycle is done."""

        values: dict[str, Any] = {"completed_at": to_db_datetime(utc_now())}
        if output is not None:
            values["output_json"] = _dump_json(output)
        return self._explicit_transition(
            task_id=task_id,
            allowed_from=frozenset({TaskStatus.APPROVED}),
            status_to=TaskStatus.COMPLETED,
            values=values,
            event_type="published",
            details={},
            action="completed",
        )

    def cancel_task(self, *, task_id: str) -> TaskView:
        """Cancel a queued, running or review task."""

        return self._explicit_transition(
            task_id=task_id,
            allowed_from=CANCELLABLE_STATUSES,
            status_to=TaskStatus.CANCELLED,
            values={"completed_at": to_db_datetime(utc_now())},
            event_type="cancelled",
            details={},
            action="cancelled",
        )

    def requeue_task(self, *, task_id: str) -> TaskView:
        """Administrative re-enqueue of a failed or cancelled task."""

        return self._explicit_transition(
            task_id=task_id,
            allowed_from=REQUEUEABLE_STATUSES,
            status_to=TaskStatus.QUEUED,
            values={
                "started_at": None,
                "completed_at": None,
                "error_message": None,
                "output_json": None,
            },
            event_type="requeued",
            details={},
            action="requeued",
            administrative=True,
        )

    # Reads

    def get_task(self, task_id: str) -> TaskView | None:
        with self._session() as session:
            row = session.exec(select(Task).where(Task.task_id == task_id)).one_or_none()
            return _to_task_view(row) if row is not None else None

    def get_task_details(self, *, task_id: str) -> TaskDetails | None:
        """Return task details with event stream and child task ids."""

        with self._session() as session:
            task = session.exec(select(Task).where(Task.task_id == task_id)).one_or_none()
            if task is None:
                return None
            event_rows = session.exec(
                select(TaskEvent)
                .where(TaskEvent.task_id == task_id)
                .order_by(col(TaskEvent.created_at).asc(), col(TaskEvent.id).asc()),
            ).all()
            child_ids = session.exec(
                select(Task.task_id)
                .where(Task.parent_task_id == task_id, Task.business_id == task.business_id)
                .order_by(col(Task.created_at).asc()),
            ).all()
            view = _to_task_view(task)

        events = [_to_event_view(row) for row in event_rows]
        return TaskDetails(task=view, events=events, child_task_ids=list(child_ids))

    def list_tasks(
        self,
        business_id: str,
        *,
        status: TaskStatus | None = None,
        parent_task_id: str | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List recent tasks of one business, optionally filtered."""

        with self._session() as session:
            statement = (
                select(Task)
                .where(Task.business_id == business_id)
                .order_by(col(Task.created_at).desc())
                .limit(limit)
            )
            if status is not None:
                statement = statement.where(Task.status == status.value)
            if parent_task_id is not None:
                statement = statement.where(Task.parent_task_id == parent_task_id)
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def queue_status(self, business_id: str) -> QueueStatus:
        """Counts by status (all states) and by assigned role (active states)."""

        with self._session() as session:
            status_rows = session.exec(
                select(Task.status, func.count(col(Task.task_id)))
                .where(Task.business_id == business_id)
                .group_by(Task.status),
            ).all()
            role_rows = session.exec(
                select(Task.assigned_to, func.count(col(Task.task_id)))
                .where(
                    Task.business_id == business_id,
                    col(Task.status).in_([status.value for status in _ACTIVE_STATUSES]),
                    col(Task.assigned_to).is_not(None),
                )
                .group_by(Task.assigned_to),
            ).all()

        by_status = {status.value: 0 for status in TaskStatus}
        for status_value, count in status_rows:
            by_status[str(status_value)] = int(count)
        by_role = {str(role): int(count) for role, count in role_rows if role}
        return QueueStatus(business_id=business_id, by_status=by_status, by_role=by_role)

    def role_activity(self, business_id: str) -> dict[str, RoleState]:
        """Derive each role's status from the tenant's tasks."""

        with self._session() as session:
            rows = session.exec(
                select(Task.assigned_to, Task.status, func.count(col(Task.task_id)))
                .where(
                    Task.business_id == business_id,
                    col(Task.assigned_to).is_not(None),
                )
                .group_by(Task.assigned_to, Task.status),
            ).all()
            last_finished: dict[str, str] = {}
            for role in WorkerRole:
                latest = session.exec(
                    select(Task.status)
                    .where(
                        Task.business_id == business_id,
                        Task.assigned_to == role.value,
                        col(Task.status).in_(
                            [TaskStatus.COMPLETED.value, TaskStatus.FAILED.value],
                        ),
                    )
                    .order_by(col(Task.completed_at).desc())
                    .limit(1),
                ).one_or_none()
                if latest is not None:
                    last_finished[role.value] = str(latest)

        counts: dict[str, dict[str, int]] = {}
        for role_value, status_value, count in rows:
            counts.setdefault(str(role_value), {})[str(status_value)] = int(count)

        activity: dict[str, RoleState] = {}
        for role in WorkerRole:
            role_counts = counts.get(role.value, {})
            if role_counts.get(TaskStatus.RUNNING.value, 0) > 0:
                activity[role.value] = RoleState.WORKING
            elif last_finished.get(role.value) == TaskStatus.FAILED.value:
                activity[role.value] = RoleState.ERROR
            elif any(role_counts.get(status.value, 0) > 0 for status in _PENDING_STATUSES):
                activity[role.value] = RoleState.ACTIVE
            else:
                activity[role.value] = RoleState.IDLE
        return activity

    # Internals

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise PersistenceError(f"Task store unavailable: {error}") from error

    def _transition(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        status_from: TaskStatus,
        status_to: TaskStatus,
        values: dict[str, Any],
        event_type: str,
        details: dict[str, object] | None = None,
        administrative: bool = False,
    ) -> TaskView | None:
        """Conditionally move one task between states; None when the guard fails."""

        if not can_transition(status_from, status_to, administrative=administrative):
            raise InvalidTransitionError(
                f"No lifecycle edge {status_from.value} -> {status_to.value}",
                task_id=task_id,
                status=status_from.value,
            )
        now = to_db_datetime(utc_now())
        with self._session() as session:
            result = session.exec(
                sa_update(Task)
                .where(
                    col(Task.task_id) == task_id,
                    col(Task.status) == status_from.value,
                )
                .values(status=status_to.value, updated_at=now, **values),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            row = session.exec(select(Task).where(Task.task_id == task_id)).one()
            self._add_event(
                session=session,
                task_id=task_id,
                business_id=row.business_id,
                event_type=event_type,
                status_from=status_from,
                status_to=status_to,
                details=details or {},
            )
            session.commit()
            view = _to_task_view(row)

        notify_safely(
            self.notifier,
            TaskChange(task_id=view.task_id, business_id=view.business_id, new_status=status_to),
        )
        return view

    def _explicit_transition(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        allowed_from: Iterable[TaskStatus],
        status_to: TaskStatus,
        values: dict[str, Any],
        event_type: str,
        details: dict[str, object],
        action: str,
        administrative: bool = False,
    ) -> TaskView:
        """Action-level transition: narrows the lifecycle graph to ``allowed_from``."""

        allowed = frozenset(allowed_from)
        current = self.get_task(task_id)
        if current is None:
            raise NotFoundError(f"Task not found: {task_id}")
        if current.status not in allowed or not can_transition(
            current.status,
            status_to,
            administrative=administrative,
        ):
            suffix = " (terminal)" if current.status.is_terminal else ""
            raise InvalidTransitionError(
                f"Task cannot be {action} from status={current.status.value}{suffix}",
                task_id=task_id,
                status=current.status.value,
            )
        view = self._transition(
            task_id=task_id,
            status_from=current.status,
            status_to=status_to,
            values=values,
            event_type=event_type,
            details=details,
            administrative=administrative,
        )
        if view is None:
            raise InvalidTransitionError(
                f"Task state changed concurrently while it was being {action}; "
                f"please retry (task_id={task_id}).",
                task_id=task_id,
            )
        return view

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        business_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            TaskEvent(
                task_id=task_id,
                business_id=business_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _dump_json(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _load_json_object(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise TypeError("Stored task payload is not a JSON object")
    return parsed


def _to_business_view(row: Business) -> BusinessView:
    return BusinessView(
        business_id=row.business_id,
        name=row.name,
        autonomy_level=AutonomyLevel(row.autonomy_level),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: Task) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        business_id=row.business_id,
        parent_task_id=row.parent_task_id,
        task_type=row.task_type,
        title=row.title,
        description=row.description,
        assigned_to=row.assigned_to,
        created_by=row.created_by,
        priority=row.priority,
        status=TaskStatus(row.status),
        input=_load_json_object(row.input_json) or {},
        output=_load_json_object(row.output_json),
        error_message=row.error_message,
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_event_view(row: TaskEvent) -> TaskEventView:
    details: dict[str, Any] = {}
    if row.details_json:
        parsed = json.loads(row.details_json)
        if isinstance(parsed, dict):
            details = parsed
    return TaskEventView(
        event_id=row.id or 0,
        task_id=row.task_id,
        event_type=row.event_type,
        status_from=TaskStatus(row.status_from) if row.status_from is not None else None,
        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        details=details,
    )
