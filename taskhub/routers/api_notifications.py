from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..auth import get_current_staff_api
from ..db import get_db
from ..notifications import (
    count_unread,
    delete_all_read,
    delete_notification,
    list_notifications,
    mark_all_read,
    mark_read,
)
from ..schemas import BulkUpdateResponse, NotificationListOut, NotificationOut


router = APIRouter()


@router.get("/", response_model=NotificationListOut)
def api_list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    staff_id = int(current_staff.id)
    rows = list_notifications(db, staff_id=staff_id, unread_only=unread_only, limit=limit)
    return NotificationListOut(
        notifications=[NotificationOut.model_validate(n) for n in rows],
        unread_count=count_unread(db, staff_id=staff_id),
    )


# Declared before the /{notification_id} routes.
@router.post("/read-all", response_model=BulkUpdateResponse)
def api_mark_all_read(
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    count = mark_all_read(db, staff_id=int(current_staff.id))
    return BulkUpdateResponse(message=f"Marked {count} notifications as read", count=count)


@router.post("/delete-all-read", response_model=BulkUpdateResponse)
def api_delete_all_read(
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    count = delete_all_read(db, staff_id=int(current_staff.id))
    return BulkUpdateResponse(message=f"Deleted {count} read notifications", count=count)


@router.post("/{notification_id}/read", response_model=BulkUpdateResponse)
def api_mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    if not mark_read(db, staff_id=int(current_staff.id), notification_id=notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return BulkUpdateResponse(message="Notification marked as read", count=1)


@router.delete("/{notification_id}", response_model=BulkUpdateResponse)
def api_delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_staff=Depends(get_current_staff_api),
):
    if not delete_notification(db, staff_id=int(current_staff.id), notification_id=notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return BulkUpdateResponse(message="Notification deleted", count=1)
