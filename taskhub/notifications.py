from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Notification, Task


logger = logging.getLogger("taskhub.notifications")

# ---- Notification types (persisted) ------------------------------------------------

NOTIFY_ASSIGNED = "task_assigned"
NOTIFY_UNASSIGNED = "task_unassigned"
NOTIFY_UPDATED = "task_updated"
NOTIFY_DELETED = "task_deleted"

NOTIFICATION_TYPES = {
    NOTIFY_ASSIGNED,
    NOTIFY_UNASSIGNED,
    NOTIFY_UPDATED,
    NOTIFY_DELETED,
}


def _build(*, notification_type: str, task: Task, detail: str | None) -> tuple[str, str | None]:
    name = task.title
    if notification_type == NOTIFY_ASSIGNED:
        return f"New task assigned: {name}", detail
    if notification_type == NOTIFY_UNASSIGNED:
        return f"Removed from task: {name}", detail
    if notification_type == NOTIFY_DELETED:
        return f"Task deleted: {name}", detail
    return f"Task updated: {name}", detail


def notify_staff(
    db: Session,
    *,
    task: Task,
    recipients: Iterable[int],
    notification_type: str,
    triggered_by_id: int | None,
    detail: str | None = None,
) -> int:
    """Create one in-app notification per recipient.

    Best-effort: a failure is logged and the number of rows written is 0.
    """
    if notification_type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {notification_type}")

    ids = list(dict.fromkeys(int(r) for r in recipients))
    if not ids:
        return 0

    title, message = _build(notification_type=notification_type, task=task, detail=detail)
    now = datetime.utcnow()
    try:
        for staff_id in ids:
            db.add(
                Notification(
                    staff_id=staff_id,
                    task_id=int(task.id),
                    triggered_by_id=(int(triggered_by_id) if triggered_by_id is not None else None),
                    notification_type=notification_type,
                    title=title[:255],
                    message=message,
                    is_read=False,
                    created_at=now,
                )
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create %s notifications for task %s", notification_type, task.id)
        return 0
    return len(ids)


# ---- Inbox --------------------------------------------------------------------------


def _inbox_query(db: Session, *, staff_id: int):
    return (
        db.query(Notification)
        .filter(Notification.staff_id == int(staff_id))
        .filter(Notification.deleted_at.is_(None))
    )


def count_unread(db: Session, *, staff_id: int) -> int:
    n = (
        _inbox_query(db, staff_id=staff_id)
        .with_entities(func.count(Notification.id))
        .filter(Notification.is_read.is_(False))
        .scalar()
    )
    return int(n or 0)


def list_notifications(db: Session, *, staff_id: int, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = _inbox_query(db, staff_id=staff_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.id.desc()).limit(max(1, min(int(limit), 200))).all()


def mark_read(db: Session, *, staff_id: int, notification_id: int) -> bool:
    count = (
        _inbox_query(db, staff_id=staff_id)
        .filter(Notification.id == int(notification_id))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return bool(count)


def mark_all_read(db: Session, *, staff_id: int) -> int:
    count = (
        _inbox_query(db, staff_id=staff_id)
        .filter(Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return int(count or 0)


def delete_notification(db: Session, *, staff_id: int, notification_id: int, when_utc: datetime | None = None) -> bool:
    """Soft-delete one notification owned by `staff_id`."""
    when = (when_utc or datetime.utcnow()).replace(tzinfo=None)
    count = (
        _inbox_query(db, staff_id=staff_id)
        .filter(Notification.id == int(notification_id))
        .update({Notification.deleted_at: when}, synchronize_session=False)
    )
    db.commit()
    return bool(count)


def delete_all_read(db: Session, *, staff_id: int, when_utc: datetime | None = None) -> int:
    when = (when_utc or datetime.utcnow()).replace(tzinfo=None)
    count = (
        _inbox_query(db, staff_id=staff_id)
        .filter(Notification.is_read.is_(True))
        .update({Notification.deleted_at: when}, synchronize_session=False)
    )
    db.commit()
    return int(count or 0)
