from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .models import ActivityLog, Staff


logger = logging.getLogger("taskhub.activity")


def log_activity(db: Session, *, task_id: int, staff_id: int, action: str, when_utc: datetime | None = None) -> bool:
    """Append one activity row. Best-effort: failures are logged, never raised."""
    try:
        db.add(
            ActivityLog(
                task_id=int(task_id),
                staff_id=int(staff_id),
                action=str(action),
                timestamp=(when_utc or datetime.utcnow()).replace(tzinfo=None),
            )
        )
        db.commit()
        return True
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to log activity for task %s", task_id)
        return False


def log_task_creation(db: Session, task_id: int, staff_id: int) -> bool:
    return log_activity(db, task_id=task_id, staff_id=staff_id, action="Created task")


def log_task_completion(db: Session, task_id: int, staff_id: int) -> bool:
    return log_activity(db, task_id=task_id, staff_id=staff_id, action="Marked task as completed")


def log_task_deletion(db: Session, task_id: int, staff_id: int) -> bool:
    return log_activity(db, task_id=task_id, staff_id=staff_id, action="Deleted task")


def _format_value(field: str, value: Any) -> str:
    if value is None or value == "":
        return "None"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) if value else "None"
    if field == "repeat_interval":
        days = int(value)
        if days == 0:
            return "Does not repeat"
        return "Every day" if days == 1 else f"Every {days} days"
    return str(getattr(value, "value", value))


def describe_changes(changes: Iterable[tuple[str, Any, Any]]) -> str:
    parts = []
    for field, old, new in changes:
        label = field.replace("_", " ").title()
        parts.append(f"{label}: {_format_value(field, old)} -> {_format_value(field, new)}")
    return "; ".join(parts)


def log_task_update(db: Session, task_id: int, staff_id: int, changes: list[tuple[str, Any, Any]]) -> bool:
    if not changes:
        return False
    return log_activity(db, task_id=task_id, staff_id=staff_id, action=f"Updated {describe_changes(changes)}")


def _staff_name(db: Session, staff_id: int) -> str:
    try:
        s = db.get(Staff, int(staff_id))
    except SQLAlchemyError:
        s = None
    return s.full_name if s else f"staff:{int(staff_id)}"


def log_task_assignment(db: Session, task_id: int, staff_id: int, assignee_id: int) -> bool:
    return log_activity(
        db, task_id=task_id, staff_id=staff_id, action=f"Assigned task to {_staff_name(db, assignee_id)}"
    )


def log_task_unassignment(db: Session, task_id: int, staff_id: int, assignee_id: int) -> bool:
    return log_activity(
        db, task_id=task_id, staff_id=staff_id, action=f"Unassigned {_staff_name(db, assignee_id)} from task"
    )


def list_task_history(db: Session, task_id: int) -> list[ActivityLog]:
    """Activity rows for one task, oldest first."""
    return (
        db.query(ActivityLog)
        .options(joinedload(ActivityLog.staff))
        .filter(ActivityLog.task_id == int(task_id))
        .order_by(ActivityLog.timestamp.asc(), ActivityLog.id.asc())
        .all()
    )
