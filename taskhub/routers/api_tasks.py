from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_current_staff_api, require_admin_api
from ..activity import list_task_history
from ..crud import (
    create_task,
    get_task,
    list_overdue_tasks,
    list_visible_tasks,
    set_task_assignees,
    soft_delete_task,
    update_task,
)
from ..db import get_db
from ..errors import Forbidden, StoreFailure, VisibilityLookupFailed
from ..permissions import Actor, authorize_task, task_permissions
from ..schemas import (
    ActivityOut,
    AssigneesUpdate,
    AssigneesUpdateResponse,
    ReplicatedTaskOut,
    SweepResponse,
    TaskCreate,
    TaskDetailOut,
    TaskOut,
    TaskPermissionsOut,
    TaskUpdate,
    TaskUpdateResponse,
)
from ..store import get_direct_subtasks
from ..sweep import sweep


router = APIRouter()

logger = logging.getLogger("taskhub.api.tasks")


def _server_error(e: Exception) -> HTTPException:
    logger.error("Request failed: %s", e)
    return HTTPException(status_code=500, detail=str(e))


def _load_task(db: Session, task_id: int):
    task = get_task(db, task_id=task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.get("/", response_model=list[TaskOut])
def api_list_tasks(
    status: str | None = Query(default=None, description="Filter by status: not-started/in-progress/completed/blocked"),
    include_subtasks: bool = Query(default=False),
    project_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    try:
        return list_visible_tasks(
            db,
            actor=Actor.from_staff(current_staff),
            status=status,
            include_subtasks=include_subtasks,
            project_id=project_id,
        )
    except (VisibilityLookupFailed, StoreFailure) as e:
        raise _server_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/", response_model=TaskOut)
def api_create_task(
    payload: TaskCreate,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    try:
        task = create_task(
            db,
            creator=current_staff,
            title=payload.title,
            notes=payload.notes,
            start_date=payload.start_date,
            due_date=payload.due_date,
            status=(payload.status.value if payload.status else None),
            priority=payload.priority,
            repeat_interval=payload.repeat_interval,
            tags=payload.tags,
            project_id=payload.project_id,
            parent_task_id=payload.parent_task_id,
            assignee_ids=payload.assignee_ids,
            subtasks=[s.model_dump() for s in payload.subtasks],
        )
    except StoreFailure as e:
        raise _server_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return task


# Declared before the /{task_id} routes.
@router.get("/overdue", response_model=list[TaskOut])
def api_list_overdue_tasks(
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    try:
        return list_overdue_tasks(db, actor=Actor.from_staff(current_staff))
    except (VisibilityLookupFailed, StoreFailure) as e:
        raise _server_error(e)


@router.post("/process-recurring", response_model=SweepResponse)
def api_process_recurring(
    db: Session = Depends(get_db),
    current_staff=Depends(require_admin_api),
):
    try:
        report = sweep(db)
    except StoreFailure as e:
        raise _server_error(e)
    return SweepResponse(
        message=report.message,
        processed=report.processed,
        created=report.created,
        failed=report.failed,
        tasks=[ReplicatedTaskOut.model_validate(r) for r in report.replicated],
    )


@router.get("/{task_id}", response_model=TaskDetailOut)
def api_get_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    task = _load_task(db, task_id)
    actor = Actor.from_staff(current_staff)
    try:
        access = authorize_task(db, actor, task)
        subtasks = get_direct_subtasks(db, int(task.id))
        history = list_task_history(db, int(task.id))
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (VisibilityLookupFailed, StoreFailure) as e:
        raise _server_error(e)

    perms = task_permissions(actor, access)
    return TaskDetailOut(
        task=TaskOut.model_validate(task),
        subtasks=[TaskOut.model_validate(s) for s in subtasks],
        permissions=TaskPermissionsOut.model_validate(perms),
        history=[ActivityOut.model_validate(h) for h in history],
    )


@router.put("/{task_id}", response_model=TaskUpdateResponse)
def api_update_task(
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    task = _load_task(db, task_id)

    # Nullable fields are only touched when the client sent them.
    optional = {k: getattr(payload, k) for k in ("notes", "start_date", "due_date") if k in payload.model_fields_set}
    try:
        updated, replication = update_task(
            db,
            task=task,
            actor=Actor.from_staff(current_staff),
            title=payload.title,
            status=(payload.status.value if payload.status else None),
            priority=payload.priority,
            repeat_interval=payload.repeat_interval,
            tags=payload.tags,
            **optional,
        )
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (VisibilityLookupFailed, StoreFailure) as e:
        raise _server_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return TaskUpdateResponse(
        task=TaskOut.model_validate(updated),
        replicated_task=(
            TaskOut.model_validate(replication.new_task) if replication is not None and replication.created else None
        ),
        replication_failures=[str(f) for f in (replication.failures if replication is not None else [])],
    )


@router.put("/{task_id}/assignees", response_model=AssigneesUpdateResponse)
def api_set_assignees(
    task_id: int,
    payload: AssigneesUpdate,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    task = _load_task(db, task_id)
    try:
        added, removed = set_task_assignees(
            db,
            task=task,
            actor=Actor.from_staff(current_staff),
            staff_ids=payload.staff_ids,
        )
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (VisibilityLookupFailed, StoreFailure) as e:
        raise _server_error(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    refreshed = _load_task(db, task_id)
    return AssigneesUpdateResponse(
        task_id=int(refreshed.id),
        active_assignee_ids=refreshed.active_assignee_ids,
        added=added,
        removed=removed,
    )


@router.delete("/{task_id}", response_model=TaskOut)
def api_delete_task(
    task_id: int,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    task = _load_task(db, task_id)

    when = datetime.utcnow().replace(tzinfo=None)
    try:
        deleted = soft_delete_task(db, task=task, actor=Actor.from_staff(current_staff), when_utc=when)
    except Forbidden as e:
        raise HTTPException(status_code=403, detail=e.message)
    except (VisibilityLookupFailed, StoreFailure) as e:
        raise _server_error(e)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return deleted
