"""Operator-facing renderers for queue, role and dispatch snapshots."""

from __future__ import annotations

from typing import Any

from agent_crew.orchestrator.models import TaskDetails, TaskStatus, WorkerRole


def render_queue_status_lines(*, business_id: str, status: dict[str, Any]) -> list[str]:
    lines = [
        f"Queue status for {business_id}: "
        f"queued={status.get('queued', 0)} running={status.get('running', 0)} "
        f"review={status.get('review', 0)}",
    ]
    by_status = status.get("by_status") or {}
    lines.append(
        "  by_status: "
        + _fmt_key_value({key: by_status.get(key, 0) for key in _status_order(by_status)}),
    )
    lines.append("  by_role: " + _fmt_key_value(status.get("by_role") or {}))
    return lines


def render_role_activity_lines(*, business_id: str, activity: dict[str, str]) -> list[str]:
    lines = [f"Roles for {business_id}:"]
    width = max((len(role.value) for role in WorkerRole), default=0)
    for role in WorkerRole:
        lines.append(f"  {role.value.ljust(width)}  {activity.get(role.value, 'idle')}")
    return lines


def render_task_line(task: dict[str, Any]) -> str:
    return (
        f"  {task['id']} type={task['type']} status={task['status']} "
        f"priority={task['priority']} role={task.get('assigned_to') or '-'} "
        f"title={task['title']}"
    )


def render_task_details_lines(details: TaskDetails) -> list[str]:
    task = details.task
    lines = [
        f"Task: {task.task_id}",
        f"Business: {task.business_id}",
        f"Type: {task.task_type}",
        f"Title: {task.title}",
        f"Status: {task.status.value}",
        f"Role: {task.assigned_to or '-'}",
        f"Priority: {task.priority}",
        f"Created by: {task.created_by}",
        f"Parent: {task.parent_task_id or '-'}",
        f"Started: {task.started_at.isoformat() if task.started_at else '-'}",
        f"Completed: {task.completed_at.isoformat() if task.completed_at else '-'}",
        f"Error: {task.error_message or '-'}",
        f"Children: {len(details.child_task_ids)}",
    ]
    lines.extend(f"  child {child_id}" for child_id in details.child_task_ids)
    lines.append(f"Events: {len(details.events)}")
    for event in details.events:
        lines.append(
            f"  {event.created_at.isoformat()} {event.event_type} "
            f"{event.status_from.value if event.status_from else '-'} -> "
            f"{event.status_to.value if event.status_to else '-'}",
        )
    return lines


def render_cycle_summary_lines(summary: dict[str, Any]) -> list[str]:
    lines = [
        f"Dispatch cycle for {summary['business_id']}: "
        f"total={summary['total']} processed={summary['processed']} failed={summary['failed']}",
    ]
    lines.extend(render_dispatch_detail_line(detail) for detail in summary["details"])
    return lines


def render_dispatch_detail_line(detail: dict[str, Any]) -> str:
    line = (
        f"  {detail['task_id']} role={detail.get('role') or '-'} status={detail['status']} "
        f"success={'yes' if detail['success'] else 'no'}"
    )
    if detail.get("discarded"):
        line += " discarded=yes"
    if detail.get("error"):
        line += f" error={detail['error']}"
    if detail.get("spawned_task_ids"):
        line += f" spawned={len(detail['spawned_task_ids'])}"
    if detail.get("spawn_error"):
        line += f" spawn_error={detail['spawn_error']}"
    return line


def _status_order(by_status: dict[str, int]) -> list[str]:
    known = [status.value for status in TaskStatus]
    return known + sorted(key for key in by_status if key not in known)


def _fmt_key_value(values: dict[str, int]) -> str:
    if not values:
        return "-"
    return ", ".join(f"{key}={value}" for key, value in values.items())
