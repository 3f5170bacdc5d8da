"""SQLModel ORM tables for the task queue."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class Business(SQLModel, table=True):
    __tablename__ = "businesses"  # type: ignore[bad-override]

    business_id: str = Field(primary_key=True)
    name: str
    autonomy_level: str = Field(default="supervised")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Task(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 10", name="ck_tasks_priority_range"),
        Index("idx_tasks_queue", "business_id", "status", "priority", "created_at"),
        Index("idx_tasks_parent", "parent_task_id"),
        Index("idx_tasks_business_role_status", "business_id", "assigned_to", "status"),
    )

    task_id: str = Field(primary_key=True)
    business_id: str = Field(
        sa_column=Column(
            ForeignKey("businesses.business_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    parent_task_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("tasks.task_id", ondelete="SET NULL"), nullable=True),
    )
    task_type: str
    title: str
    description: str | None = Field(default=None, sa_column=Column(Text))
    assigned_to: str | None = None
    created_by: str = Field(default="human")
    priority: int = Field(default=5)
    status: str
    input_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    output_json: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEvent(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    business_id: str
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
