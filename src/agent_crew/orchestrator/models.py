"""Domain models for the task queue and its lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    REVIEW = "review"
    APPROVED = "approved"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})

# Allowed lifecycle edges driven by dispatch and review actions.
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset(
        {TaskStatus.COMPLETED, TaskStatus.REVIEW, TaskStatus.FAILED, TaskStatus.CANCELLED},
    ),
    TaskStatus.REVIEW: frozenset({TaskStatus.APPROVED, TaskStatus.FAILED, TaskStatus.CANCELLED}),
    TaskStatus.APPROVED: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

# Operator re-enqueue; never taken by the dispatcher.
ADMIN_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.FAILED: frozenset({TaskStatus.QUEUED}),
    TaskStatus.CANCELLED: frozenset({TaskStatus.QUEUED}),
}

CANCELLABLE_STATUSES = frozenset(
    status for status, targets in TRANSITIONS.items() if TaskStatus.CANCELLED in targets
)
REQUEUEABLE_STATUSES = frozenset(ADMIN_TRANSITIONS)


def can_transition(
    status_from: TaskStatus,
    status_to: TaskStatus,
    *,
    administrative: bool = False,
) -> bool:
    """Return True when the lifecycle graph has an edge between two states."""

    if status_to in TRANSITIONS[status_from]:
        return True
    return administrative and status_to in ADMIN_TRANSITIONS.get(status_from, frozenset())


class TaskType(str, Enum):
    """Closed set of work categories."""

    STRATEGY = "strategy"
    RESEARCH = "research"
    INTEL = "intel"
    WRITE = "write"
    DESIGN = "design"
    PUBLISH = "publish"
    ENGAGE = "engage"
    ANALYZE = "analyze"
    REVIEW = "review"


class WorkerRole(str, Enum):
    """Fixed roster of specialized workers."""

    STRATEGIST = "strategist"
    RESEARCHER = "researcher"
    WATCHER = "watcher"
    WRITER = "writer"
    VISUAL_CREATOR = "visual-creator"
    PUBLISHER = "publisher"
    ENGAGER = "engager"
    ANALYST = "analyst"


CONTENT_PRODUCING_ROLES = frozenset({WorkerRole.WRITER, WorkerRole.VISUAL_CREATOR})
HUMAN_CREATOR = "human"


class AutonomyLevel(str, Enum):
    """Per-business approval configuration."""

    SUPERVISED = "supervised"
    SEMI_AUTO = "semi-auto"
    FULL_AUTO = "full-auto"


class OutcomeKind(str, Enum):
    """Review Gate classification of one unit of work."""

    COMPLETED = "completed"
    NEEDS_REVIEW = "needs_review"
    FAILED = "failed"


class RoleState(str, Enum):
    """Derived, never persisted, worker role status."""

    ACTIVE = "active"
    WORKING = "working"
    IDLE = "idle"
    ERROR = "error"


@dataclass(slots=True)
class Outcome:
    """Result to persist for a running task."""

    kind: OutcomeKind
    output: dict[str, Any] | None = None
    error_message: str | None = None

    @classmethod
    def completed(cls, output: dict[str, Any]) -> Outcome:
        return cls(kind=OutcomeKind.COMPLETED, output=output)

    @classmethod
    def needs_review(cls, output: dict[str, Any]) -> Outcome:
        return cls(kind=OutcomeKind.NEEDS_REVIEW, output=output)

    @classmethod
    def failed(cls, error_message: str) -> Outcome:
        return cls(kind=OutcomeKind.FAILED, error_message=error_message)


@dataclass(slots=True)
class BusinessView:
    """Tenant record as seen by the orchestration core."""

    business_id: str
    name: str
    autonomy_level: AutonomyLevel
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskCreate:
    """Input payload for enqueuing a task."""

    business_id: str
    task_type: TaskType
    title: str
    description: str | None = None
    assigned_to: WorkerRole | None = None
    created_by: str = HUMAN_CREATOR
    priority: int = 5
    input: dict[str, Any] = field(default_factory=dict)
    parent_task_id: str | None = None
    task_id: str | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view for the dispatcher, control plane and CLI.

    ``task_type`` and ``assigned_to`` stay plain strings: rows may carry values
    the current routing table no longer knows, and the router is the place that
    rejects them.
    """

    task_id: str
    business_id: str
    parent_task_id: str | None
    task_type: str
    title: str
    description: str | None
    assigned_to: str | None
    created_by: str
    priority: int
    status: TaskStatus
    input: dict[str, Any]
    output: dict[str, Any] | None
    error_message: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.task_id,
            "business_id": self.business_id,
            "parent_task_id": self.parent_task_id,
            "type": self.task_type,
            "title": self.title,
            "description": self.description,
            "assigned_to": self.assigned_to,
            "created_by": self.created_by,
            "priority": self.priority,
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "error_message": self.error_message,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task details with event stream and direct children."""

    task: TaskView
    events: list[TaskEventView]
    child_task_ids: list[str]


@dataclass(slots=True)
class QueueStatus:
    """Per-tenant queue snapshot: counts by status and by assigned role."""

    business_id: str
    by_status: dict[str, int]
    by_role: dict[str, int]

    @property
    def queued(self) -> int:
        return self.by_status.get(TaskStatus.QUEUED.value, 0)

    @property
    def running(self) -> int:
        return self.by_status.get(TaskStatus.RUNNING.value, 0)

    @property
    def review(self) -> int:
        return self.by_status.get(TaskStatus.REVIEW.value, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queued": self.queued,
            "running": self.running,
            "review": self.review,
            "by_role": dict(self.by_role),
            "by_status": dict(self.by_status),
        }


@dataclass(slots=True)
class TaskChange:
    """Mutation announcement emitted to observers."""

    task_id: str
    business_id: str
    new_status: TaskStatus

    def to_dict(self) -> dict[str, str]:
        return {
            "task_id": self.task_id,
            "business_id": self.business_id,
            "new_status": self.new_status.value,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
