"""Replication of completed recurring tasks.

A task with `repeat_interval = N > 0` produces exactly one successor when it
is completed: the same task shifted forward by N days, with its active
assignees and its direct subtasks copied. The successor keeps N, so the chain
continues one occurrence at a time. A task completed a week late therefore
produces the next missed occurrence, not today's.

After the successor exists the source's `repeat_interval` is cleared to 0.
That is the only marker preventing a second replication of the same
completion, so it is written last and conditionally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from .activity import log_task_creation
from .errors import NotEligibleForReplication, PartialReplicationFailure, ReplicationSkip, StoreFailure
from .models import Task, TaskStatus
from .store import (
    clear_repeat_interval,
    get_active_assignees,
    get_direct_subtasks,
    insert_assignees,
    insert_task,
)


logger = logging.getLogger("taskhub.recurrence")


@dataclass
class ReplicationResult:
    source_task_id: int
    new_task: Optional[Task] = None
    skipped: Optional[NotEligibleForReplication] = None
    failures: list[PartialReplicationFailure] = field(default_factory=list)
    subtasks_created: int = 0
    guard_cleared: bool = False

    @property
    def created(self) -> bool:
        return self.new_task is not None

    @property
    def partial(self) -> bool:
        return self.created and bool(self.failures)


def check_eligibility(task: Task) -> Optional[ReplicationSkip]:
    if not task.repeat_interval or int(task.repeat_interval) <= 0:
        return ReplicationSkip.no_repeat_interval
    if task.due_date is None:
        return ReplicationSkip.no_due_date
    if TaskStatus(task.status) != TaskStatus.completed:
        return ReplicationSkip.not_completed
    if task.deleted_at is not None:
        return ReplicationSkip.deleted
    return None


def shift_date(value: Optional[date], days: int) -> Optional[date]:
    if value is None:
        return None
    return value + timedelta(days=int(days))


def _occurrence_fields(source: Task, *, days: int, parent_task_id: Optional[int], repeat_interval: int) -> dict[str, Any]:
    return {
        "title": source.title,
        "notes": source.notes,
        "project_id": source.project_id,
        "parent_task_id": parent_task_id,
        "creator_id": int(source.creator_id),
        "priority": source.priority,
        "tags": list(source.tags or []),
        "start_date": shift_date(source.start_date, days),
        "due_date": shift_date(source.due_date, days),
        "repeat_interval": int(repeat_interval),
        "status": TaskStatus.not_started,
        "completed_at": None,
        "deleted_at": None,
    }


def _copy_active_assignees(db: Session, *, source_task_id: int, target_task_id: int) -> int:
    rows = get_active_assignees(db, source_task_id)
    return insert_assignees(db, [(target_task_id, r.staff_id, r.assigned_by_id) for r in rows])


def _record_failure(result: ReplicationResult, *, new_task_id: int, step: str, error: Exception) -> None:
    failure = PartialReplicationFailure(
        source_task_id=result.source_task_id,
        new_task_id=new_task_id,
        step=step,
        detail=str(error),
    )
    result.failures.append(failure)
    logger.warning("Partial replication: %s", failure)


def _copy_subtasks(db: Session, result: ReplicationResult, *, days: int, new_parent_id: int) -> None:
    try:
        subtasks = get_direct_subtasks(db, result.source_task_id)
    except StoreFailure as e:
        _record_failure(result, new_task_id=new_parent_id, step="load subtasks", error=e)
        return

    for sub in subtasks:
        sub_id = int(sub.id)
        fields = _occurrence_fields(sub, days=days, parent_task_id=new_parent_id, repeat_interval=0)
        try:
            new_sub = insert_task(db, **fields)
        except StoreFailure as e:
            _record_failure(result, new_task_id=new_parent_id, step=f"copy subtask {sub_id}", error=e)
            continue

        result.subtasks_created += 1
        log_task_creation(db, int(new_sub.id), int(fields["creator_id"]))

        try:
            _copy_active_assignees(db, source_task_id=sub_id, target_task_id=int(new_sub.id))
        except StoreFailure as e:
            _record_failure(result, new_task_id=new_parent_id, step=f"copy assignees of subtask {sub_id}", error=e)


def replicate_completed_task(db: Session, task: Task) -> ReplicationResult:
    """Create the next occurrence of a completed recurring task.

    Ineligible tasks come back with `skipped` set. A failure to insert the new
    occurrence raises `StoreFailure` and leaves the source untouched. Failures
    while copying assignees or subtasks are collected on `failures`; the new
    occurrence is kept and the source guard is still cleared.
    """
    result = ReplicationResult(source_task_id=int(task.id))

    reason = check_eligibility(task)
    if reason is not None:
        result.skipped = NotEligibleForReplication(result.source_task_id, reason)
        return result

    days = int(task.repeat_interval)
    fields = _occurrence_fields(task, days=days, parent_task_id=task.parent_task_id, repeat_interval=days)

    new_task = insert_task(db, **fields)
    new_id = int(new_task.id)
    result.new_task = new_task
    logger.info(
        "Task %s: created next occurrence %s due %s",
        result.source_task_id,
        new_id,
        fields["due_date"].isoformat(),
    )
    log_task_creation(db, new_id, int(fields["creator_id"]))

    try:
        _copy_active_assignees(db, source_task_id=result.source_task_id, target_task_id=new_id)
    except StoreFailure as e:
        _record_failure(result, new_task_id=new_id, step="copy assignees", error=e)

    _copy_subtasks(db, result, days=days, new_parent_id=new_id)

    try:
        result.guard_cleared = clear_repeat_interval(db, result.source_task_id)
    except StoreFailure:
        logger.exception("Task %s: failed to clear repeat interval after replication", result.source_task_id)
    else:
        if not result.guard_cleared:
            logger.warning(
                "Task %s: repeat interval was already cleared; a concurrent replication may have run",
                result.source_task_id,
            )

    return result
