"""Row-level persistence operations.

Every function either returns data or raises `StoreFailure`; retries are left
to the caller. The session is rolled back before the error propagates so the
caller can keep using it.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .errors import StoreFailure
from .models import Staff, Task, TaskAssignee, TaskStatus


logger = logging.getLogger("taskhub.store")


@contextmanager
def _store_call(db: Session, op: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        try:
            db.rollback()
        except SQLAlchemyError:
            logger.exception("Rollback failed after %s", op)
        raise StoreFailure(f"{op} failed: {e.__class__.__name__}") from e


# ---------------------- Staff ----------------------


def get_staff_by_departments(db: Session, departments: Iterable[str]) -> list[Staff]:
    names = sorted({str(d) for d in departments if d})
    if not names:
        return []
    with _store_call(db, "get_staff_by_departments"):
        return db.query(Staff).filter(Staff.department.in_(names)).order_by(Staff.id.asc()).all()


# ---------------------- Tasks ----------------------


def get_task(db: Session, task_id: int, *, include_deleted: bool = False) -> Optional[Task]:
    with _store_call(db, "get_task"):
        q = db.query(Task).options(joinedload(Task.assignees)).filter(Task.id == int(task_id))
        if not include_deleted:
            q = q.filter(Task.deleted_at.is_(None))
        return q.first()


def get_direct_subtasks(db: Session, parent_id: int) -> list[Task]:
    """Non-deleted tasks whose parent is `parent_id`, oldest first."""
    with _store_call(db, "get_direct_subtasks"):
        return (
            db.query(Task)
            .filter(Task.parent_task_id == int(parent_id))
            .filter(Task.deleted_at.is_(None))
            .order_by(Task.id.asc())
            .all()
        )


def insert_task(db: Session, **fields: Any) -> Task:
    with _store_call(db, "insert_task"):
        task = Task(**fields)
        db.add(task)
        db.commit()
        db.refresh(task)
        return task


def update_task(db: Session, task_id: int, fields: dict[str, Any]) -> int:
    """Apply `fields` to one task row. Returns the number of rows updated."""
    if not fields:
        return 0
    values = dict(fields)
    values.setdefault("updated_at", datetime.utcnow())
    with _store_call(db, "update_task"):
        count = (
            db.query(Task)
            .filter(Task.id == int(task_id))
            .update(values, synchronize_session=False)
        )
        db.commit()
        return int(count or 0)


def clear_repeat_interval(db: Session, task_id: int) -> bool:
    """Set repeat_interval to 0 only if it is still positive.

    Returns False when another writer already cleared it.
    """
    with _store_call(db, "clear_repeat_interval"):
        count = (
            db.query(Task)
            .filter(Task.id == int(task_id))
            .filter(Task.repeat_interval > 0)
            .update({Task.repeat_interval: 0, Task.updated_at: datetime.utcnow()}, synchronize_session=False)
        )
        db.commit()
        return bool(count)


def list_unreplicated_completed_tasks(db: Session) -> list[Task]:
    with _store_call(db, "list_unreplicated_completed_tasks"):
        return (
            db.query(Task)
            .filter(Task.repeat_interval > 0)
            .filter(Task.status == TaskStatus.completed)
            .filter(Task.due_date.is_not(None))
            .filter(Task.deleted_at.is_(None))
            .order_by(Task.id.asc())
            .all()
        )


def soft_delete_tasks(db: Session, task_ids: Iterable[int], *, when_utc: datetime) -> int:
    ids = [int(x) for x in task_ids]
    if not ids:
        return 0
    with _store_call(db, "soft_delete_tasks"):
        count = (
            db.query(Task)
            .filter(Task.id.in_(ids))
            .filter(Task.deleted_at.is_(None))
            .update({Task.deleted_at: when_utc}, synchronize_session=False)
        )
        db.commit()
        return int(count or 0)


# ---------------------- Assignees ----------------------


def get_active_assignees(db: Session, task_id: int) -> list[TaskAssignee]:
    with _store_call(db, "get_active_assignees"):
        return (
            db.query(TaskAssignee)
            .filter(TaskAssignee.task_id == int(task_id))
            .filter(TaskAssignee.is_active.is_(True))
            .order_by(TaskAssignee.id.asc())
            .all()
        )


def get_active_assignee_ids(db: Session, task_id: int) -> list[int]:
    return [int(a.staff_id) for a in get_active_assignees(db, task_id)]


def insert_assignees(db: Session, rows: Iterable[tuple[int, int, Optional[int]]]) -> int:
    """Insert active (task_id, staff_id, assigned_by_id) rows in one commit."""
    items = list(rows)
    if not items:
        return 0
    with _store_call(db, "insert_assignees"):
        for task_id, staff_id, assigned_by_id in items:
            db.add(
                TaskAssignee(
                    task_id=int(task_id),
                    staff_id=int(staff_id),
                    assigned_by_id=(int(assigned_by_id) if assigned_by_id is not None else None),
                    is_active=True,
                )
            )
        db.commit()
        return len(items)


def _activate_or_insert(db: Session, *, task_id: int, staff_id: int, assigned_by_id: Optional[int]) -> TaskAssignee:
    row = (
        db.query(TaskAssignee)
        .filter(TaskAssignee.task_id == int(task_id))
        .filter(TaskAssignee.staff_id == int(staff_id))
        .first()
    )
    if row is None:
        row = TaskAssignee(task_id=int(task_id), staff_id=int(staff_id))
    row.is_active = True
    row.assigned_by_id = int(assigned_by_id) if assigned_by_id is not None else None
    db.add(row)
    return row


def replace_active_assignees(
    db: Session,
    task_id: int,
    staff_ids: Iterable[int],
    *,
    assigned_by_id: Optional[int],
) -> list[TaskAssignee]:
    """Deactivate every assignee of the task, then activate-or-insert `staff_ids`.

    Both steps are flushed in order and committed together.
    """
    wanted = list(dict.fromkeys(int(s) for s in staff_ids))
    with _store_call(db, "replace_active_assignees"):
        (
            db.query(TaskAssignee)
            .filter(TaskAssignee.task_id == int(task_id))
            .update({TaskAssignee.is_active: False}, synchronize_session="fetch")
        )
        db.flush()
        rows = [
            _activate_or_insert(db, task_id=int(task_id), staff_id=sid, assigned_by_id=assigned_by_id)
            for sid in wanted
        ]
        db.commit()
        return rows

