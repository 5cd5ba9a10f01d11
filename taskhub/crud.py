from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import store
from .activity import (
    log_task_assignment,
    log_task_completion,
    log_task_creation,
    log_task_deletion,
    log_task_unassignment,
    log_task_update,
    describe_changes,
)
from .config import get_settings
from .errors import AssigneeLimitError, Forbidden, StoreFailure
from .models import Staff, Task, TaskAssignee, TaskStatus
from .notifications import NOTIFY_ASSIGNED, NOTIFY_DELETED, NOTIFY_UNASSIGNED, NOTIFY_UPDATED, notify_staff
from .permissions import Actor, TaskAction, authorize_task
from .recurrence import ReplicationResult, replicate_completed_task
from .visibility import visible_staff_ids


logger = logging.getLogger("taskhub.crud")

DEFAULT_NOTES = "No notes..."

_UNSET: Any = object()


def _now_utc_naive() -> datetime:
    return datetime.utcnow().replace(tzinfo=None)


# ---------------------- Validation ----------------------


def _validate_priority(priority: Optional[int]) -> Optional[int]:
    if priority is None:
        return None
    try:
        p = int(priority)
    except (TypeError, ValueError) as e:
        raise ValueError("Invalid priority: must be an integer between 1 and 10") from e
    if p != priority or p < 1 or p > 10:
        raise ValueError("Invalid priority: must be an integer between 1 and 10")
    return p


def _validate_repeat_interval(repeat_interval: Optional[int], *, subtask: bool = False) -> int:
    n = int(repeat_interval or 0)
    if n < 0:
        raise ValueError("repeat_interval must be 0 or a positive number of days")
    # Subtasks recur only through their parent.
    if n > 0 and subtask:
        raise ValueError("Subtasks cannot repeat on their own")
    return n


def _validate_assignee_ids(staff_ids: Iterable[int], *, label: str = "") -> list[int]:
    ids = list(dict.fromkeys(int(s) for s in (staff_ids or [])))
    limit = int(get_settings().assignees.max_per_task)
    prefix = f"{label}: " if label else ""
    if not ids:
        raise AssigneeLimitError(f"{prefix}At least one assignee is required")
    if len(ids) > limit:
        raise AssigneeLimitError(f"{prefix}Maximum {limit} assignees allowed per task")
    return ids


def _ensure_staff_exist(db: Session, staff_ids: Iterable[int]) -> None:
    wanted = {int(s) for s in staff_ids}
    if not wanted:
        return
    found = {int(sid) for (sid,) in db.query(Staff.id).filter(Staff.id.in_(wanted)).all()}
    missing = sorted(wanted - found)
    if missing:
        raise ValueError(f"Staff not found: {', '.join(str(m) for m in missing)}")


def normalize_tags(tags: Optional[Iterable[str]]) -> list[str]:
    out: list[str] = []
    for raw in tags or []:
        t = str(raw).strip()
        if t and t not in out:
            out.append(t)
    return out


def _due_from_interval(start: Optional[date], due: Optional[date], repeat_interval: int) -> Optional[date]:
    # A repeating task with a start date is due one interval after it starts.
    if repeat_interval > 0 and start is not None:
        return start + timedelta(days=repeat_interval)
    return due


# ---------------------- Staff ----------------------


def get_staff_by_auth_id(db: Session, auth_user_id: str) -> Optional[Staff]:
    ident = (auth_user_id or "").strip()
    if not ident:
        return None
    return db.query(Staff).filter(Staff.auth_user_id == ident).first()


def list_visible_staff(db: Session, *, actor: Actor) -> list[Staff]:
    ids = visible_staff_ids(db, actor.department)
    if not ids:
        return []
    return db.query(Staff).filter(Staff.id.in_(ids)).order_by(Staff.full_name.asc()).all()


def create_staff(
    db: Session,
    *,
    auth_user_id: str,
    full_name: str,
    department: str | None = None,
    email: str | None = None,
    is_manager: bool = False,
    is_admin: bool = False,
) -> Staff:
    ident = (auth_user_id or "").strip()
    if not ident:
        raise ValueError("auth_user_id is required")
    if get_staff_by_auth_id(db, ident):
        raise ValueError("Staff with this auth_user_id already exists")

    staff = Staff(
        auth_user_id=ident,
        full_name=(full_name or "").strip() or ident,
        department=(department or None),
        email=(email or None),
        is_manager=bool(is_manager),
        is_admin=bool(is_admin),
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff


# ---------------------- Tasks ----------------------


def get_task(db: Session, *, task_id: int) -> Optional[Task]:
    """Return a non-deleted task, or None."""
    return store.get_task(db, int(task_id))


def list_descendant_tasks(db: Session, *, root_task_id: int) -> list[Task]:
    """Return all non-deleted descendants (children, grandchildren, ...) of `root_task_id`.

    Breadth-first search using repeated IN() queries.
    """

    root_id = int(root_task_id)
    out: list[Task] = []
    seen: set[int] = {root_id}
    frontier: list[int] = [root_id]

    while frontier:
        rows = (
            db.query(Task)
            .filter(Task.parent_task_id.in_(frontier))
            .filter(Task.deleted_at.is_(None))
            .all()
        )
        frontier = []
        for t in rows:
            tid = int(t.id)
            if tid in seen:
                continue
            seen.add(tid)
            out.append(t)
            frontier.append(tid)
    return out


def list_visible_tasks(
    db: Session,
    *,
    actor: Actor,
    status: Optional[str] = None,
    include_subtasks: bool = False,
    project_id: Optional[int] = None,
    overdue_on: Optional[date] = None,
) -> list[Task]:
    """Tasks the actor may view, soonest due first.

    `overdue_on` keeps only unfinished tasks due before that date.
    """
    visible = visible_staff_ids(db, actor.department)
    if not visible:
        return []

    active = select(TaskAssignee.task_id).where(TaskAssignee.is_active.is_(True))
    visible_assigned = active.where(TaskAssignee.staff_id.in_(visible))

    q = (
        db.query(Task)
        .filter(Task.deleted_at.is_(None))
        .filter(
            or_(
                Task.id.in_(visible_assigned),
                and_(Task.id.not_in(active), Task.creator_id.in_(visible)),
            )
        )
    )
    if not include_subtasks:
        q = q.filter(Task.parent_task_id.is_(None))
    if status:
        try:
            st = TaskStatus(status)
        except ValueError as e:
            raise ValueError("Invalid status") from e
        q = q.filter(Task.status == st)
    if project_id is not None:
        q = q.filter(Task.project_id == int(project_id))
    if overdue_on is not None:
        q = q.filter(Task.due_date < overdue_on).filter(Task.status != TaskStatus.completed)

    return q.order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.id.asc()).all()


def list_overdue_tasks(db: Session, *, actor: Actor, today: Optional[date] = None) -> list[Task]:
    return list_visible_tasks(db, actor=actor, include_subtasks=True, overdue_on=(today or date.today()))


def _notify_assignees(
    db: Session,
    *,
    task: Task,
    recipients: Iterable[int],
    notification_type: str,
    actor_id: int | None,
    detail: str | None = None,
) -> None:
    # Collaborator failures never undo the task change.
    try:
        notify_staff(
            db,
            task=task,
            recipients=[r for r in recipients if actor_id is None or int(r) != int(actor_id)],
            notification_type=notification_type,
            triggered_by_id=actor_id,
            detail=detail,
        )
    except Exception:
        logger.exception("Failed to create %s notifications for task %s", notification_type, task.id)


def create_task(
    db: Session,
    *,
    creator: Staff,
    title: str,
    assignee_ids: Iterable[int],
    notes: Optional[str] = None,
    start_date: Optional[date] = None,
    due_date: Optional[date] = None,
    status: Optional[str] = None,
    priority: Optional[int] = None,
    repeat_interval: Optional[int] = 0,
    tags: Optional[Iterable[str]] = None,
    project_id: Optional[int] = None,
    parent_task_id: Optional[int] = None,
    assigned_by_id: Optional[int] = None,
    subtasks: Optional[Iterable[dict[str, Any]]] = None,
) -> Task:
    """Create a task, its assignees and any subtasks in one transaction."""
    name = (title or "").strip()
    if not name:
        raise ValueError("Title is required")

    interval = _validate_repeat_interval(repeat_interval, subtask=parent_task_id is not None)
    prio = _validate_priority(priority)
    st = TaskStatus(status) if status else TaskStatus.not_started
    owners = _validate_assignee_ids(assignee_ids)
    assigner = int(assigned_by_id) if assigned_by_id is not None else int(creator.id)

    if parent_task_id is not None:
        parent = get_task(db, task_id=int(parent_task_id))
        if not parent:
            raise ValueError("Parent task not found")
        if parent.is_subtask:
            raise ValueError("Subtasks cannot have subtasks")

    sub_specs = list(subtasks or [])
    if sub_specs and parent_task_id is not None:
        raise ValueError("Subtasks cannot have subtasks")

    prepared_subs: list[tuple[dict[str, Any], list[int]]] = []
    for i, s in enumerate(sub_specs, start=1):
        sub_title = str(s.get("title") or "").strip()
        if not sub_title:
            raise ValueError(f"Subtask {i}: Title is required")
        sub_owners = _validate_assignee_ids(s.get("assignee_ids") or [], label=f"Subtask {i}")
        try:
            sub_interval = _validate_repeat_interval(s.get("repeat_interval"), subtask=True)
        except ValueError as e:
            raise ValueError(f"Subtask {i}: {e}") from e
        sub_priority = _validate_priority(s.get("priority"))
        sub_fields = {
            "title": sub_title,
            "notes": s.get("notes") or DEFAULT_NOTES,
            "start_date": s.get("start_date"),
            "due_date": _due_from_interval(s.get("start_date"), s.get("due_date"), sub_interval),
            "status": TaskStatus(s["status"]) if s.get("status") else TaskStatus.not_started,
            "priority": sub_priority if sub_priority is not None else prio,
            "repeat_interval": sub_interval,
            "tags": normalize_tags(s.get("tags")) or normalize_tags(tags),
            "project_id": project_id,
            "creator_id": int(creator.id),
        }
        prepared_subs.append((sub_fields, sub_owners))

    _ensure_staff_exist(db, owners + [sid for _, ids in prepared_subs for sid in ids])

    task = Task(
        title=name,
        notes=notes or DEFAULT_NOTES,
        start_date=start_date,
        due_date=_due_from_interval(start_date, due_date, interval),
        status=st,
        priority=prio,
        repeat_interval=interval,
        tags=normalize_tags(tags),
        project_id=project_id,
        parent_task_id=(int(parent_task_id) if parent_task_id is not None else None),
        creator_id=int(creator.id),
        completed_at=(_now_utc_naive() if st == TaskStatus.completed else None),
    )
    created_subs: list[tuple[Task, list[int]]] = []
    try:
        db.add(task)
        db.flush()
        for sid in owners:
            db.add(TaskAssignee(task_id=task.id, staff_id=sid, assigned_by_id=assigner, is_active=True))

        for sub_fields, sub_owners in prepared_subs:
            sub = Task(parent_task_id=task.id, **sub_fields)
            db.add(sub)
            db.flush()
            for sid in sub_owners:
                db.add(TaskAssignee(task_id=sub.id, staff_id=sid, assigned_by_id=assigner, is_active=True))
            created_subs.append((sub, sub_owners))

        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreFailure("Failed to create task") from e

    db.refresh(task)

    log_task_creation(db, int(task.id), int(creator.id))
    _notify_assignees(db, task=task, recipients=owners, notification_type=NOTIFY_ASSIGNED, actor_id=int(creator.id))
    for sub, sub_owners in created_subs:
        log_task_creation(db, int(sub.id), int(creator.id))
        _notify_assignees(
            db, task=sub, recipients=sub_owners, notification_type=NOTIFY_ASSIGNED, actor_id=int(creator.id)
        )

    return task


def update_task(
    db: Session,
    *,
    task: Task,
    actor: Actor,
    title: Optional[str] = None,
    notes: Any = _UNSET,
    start_date: Any = _UNSET,
    due_date: Any = _UNSET,
    status: Optional[str] = None,
    priority: Optional[int] = None,
    repeat_interval: Optional[int] = None,
    tags: Optional[Iterable[str]] = None,
) -> tuple[Task, Optional[ReplicationResult]]:
    """Apply an edit and, on a transition into completed, replicate a recurring task.

    Returns the updated task and the replication result (None when no
    replication was attempted or it failed; the sweep picks up the latter).
    """
    authorize_task(db, actor, task, TaskAction.edit)

    task_id = int(task.id)
    fields: dict[str, Any] = {}
    changes: list[tuple[str, Any, Any]] = []

    def _set(name: str, value: Any) -> None:
        old = getattr(task, name)
        if old != value:
            changes.append((name, old, value))
        fields[name] = value

    if title is not None:
        name = title.strip()
        if not name:
            raise ValueError("Title is required")
        _set("title", name)
    if notes is not _UNSET:
        _set("notes", notes)
    if start_date is not _UNSET:
        _set("start_date", start_date)
    if due_date is not _UNSET:
        _set("due_date", due_date)
    if priority is not None:
        _set("priority", _validate_priority(priority))
    if repeat_interval is not None:
        _set("repeat_interval", _validate_repeat_interval(repeat_interval, subtask=task.is_subtask))
    if tags is not None:
        _set("tags", normalize_tags(tags))

    if repeat_interval is not None:
        start = fields.get("start_date", task.start_date)
        computed = _due_from_interval(start, fields.get("due_date", task.due_date), int(fields["repeat_interval"]))
        if computed != fields.get("due_date", task.due_date):
            _set("due_date", computed)

    old_status = TaskStatus(task.status)
    new_status = old_status
    if status is not None:
        try:
            new_status = TaskStatus(status)
        except ValueError as e:
            raise ValueError("Invalid status") from e
        if new_status != old_status:
            _set("status", new_status)
            fields["completed_at"] = _now_utc_naive() if new_status == TaskStatus.completed else None

    if fields:
        store.update_task(db, task_id, fields)

    became_completed = old_status != TaskStatus.completed and new_status == TaskStatus.completed
    updated = store.get_task(db, task_id)
    if updated is None:
        raise StoreFailure(f"Task {task_id} disappeared during update")

    if became_completed:
        log_task_completion(db, task_id, actor.staff_id)
    elif changes:
        log_task_update(db, task_id, actor.staff_id, changes)
        _notify_assignees(
            db,
            task=updated,
            recipients=updated.active_assignee_ids,
            notification_type=NOTIFY_UPDATED,
            actor_id=actor.staff_id,
            detail=describe_changes(changes),
        )

    replication: Optional[ReplicationResult] = None
    if became_completed and int(updated.repeat_interval or 0) > 0:
        logger.info("Task %s completed with repeat_interval %s; replicating", task_id, updated.repeat_interval)
        try:
            replication = replicate_completed_task(db, updated)
        except StoreFailure:
            logger.exception("Failed to replicate task %s; the recurring sweep will retry", task_id)
        updated = store.get_task(db, task_id) or updated

    return updated, replication


def set_task_assignees(
    db: Session,
    *,
    task: Task,
    actor: Actor,
    staff_ids: Iterable[int],
) -> tuple[list[int], list[int]]:
    """Replace the task's active assignee set. Returns (added, removed) staff ids."""
    authorize_task(db, actor, task, TaskAction.edit)

    wanted = _validate_assignee_ids(staff_ids)
    _ensure_staff_exist(db, wanted)

    task_id = int(task.id)
    current = store.get_active_assignee_ids(db, task_id)
    added = [s for s in wanted if s not in current]
    removed = [s for s in current if s not in wanted]

    if removed and not actor.is_manager:
        raise Forbidden("Only managers can unassign assignees from a task")

    store.replace_active_assignees(db, task_id, wanted, assigned_by_id=actor.staff_id)

    for sid in added:
        log_task_assignment(db, task_id, actor.staff_id, sid)
    for sid in removed:
        log_task_unassignment(db, task_id, actor.staff_id, sid)

    refreshed = store.get_task(db, task_id) or task
    _notify_assignees(db, task=refreshed, recipients=added, notification_type=NOTIFY_ASSIGNED, actor_id=actor.staff_id)
    _notify_assignees(
        db, task=refreshed, recipients=removed, notification_type=NOTIFY_UNASSIGNED, actor_id=actor.staff_id
    )
    return added, removed


def soft_delete_task(db: Session, *, task: Task, actor: Actor, when_utc: Optional[datetime] = None) -> Task:
    """Soft-delete a task together with all of its non-deleted descendants."""
    authorize_task(db, actor, task, TaskAction.delete)

    task_id = int(task.id)
    when = (when_utc or _now_utc_naive()).replace(tzinfo=None)
    descendants = list_descendant_tasks(db, root_task_id=task_id)

    count = store.soft_delete_tasks(db, [task_id] + [int(t.id) for t in descendants], when_utc=when)
    if count == 0:
        raise ValueError("Task not found or already deleted")

    log_task_deletion(db, task_id, actor.staff_id)

    deleted = store.get_task(db, task_id, include_deleted=True) or task
    _notify_assignees(
        db,
        task=deleted,
        recipients=deleted.active_assignee_ids,
        notification_type=NOTIFY_DELETED,
        actor_id=actor.staff_id,
    )
    return deleted
