from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import TaskStatus


class StaffOut(BaseModel):
    id: int
    full_name: str
    email: Optional[str] = None
    department: Optional[str] = None
    is_manager: bool
    is_admin: bool

    class Config:
        from_attributes = True


class SubtaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[TaskStatus] = None
    # Range is checked by the service so the error surfaces as a 400.
    priority: Optional[int] = None
    repeat_interval: int = 0
    tags: List[str] = Field(default_factory=list)
    assignee_ids: List[int] = Field(default_factory=list)


class TaskCreate(SubtaskCreate):
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    subtasks: List[SubtaskCreate] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    notes: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[TaskStatus] = None
    priority: Optional[int] = None
    repeat_interval: Optional[int] = None
    tags: Optional[List[str]] = None


class AssigneesUpdate(BaseModel):
    staff_ids: List[int] = Field(default_factory=list)


class TaskOut(BaseModel):
    id: int
    title: str
    notes: Optional[str]
    start_date: Optional[date]
    due_date: Optional[date]
    status: TaskStatus
    priority: Optional[int]
    repeat_interval: int
    tags: List[str] = []
    project_id: Optional[int]
    parent_task_id: Optional[int]
    creator_id: int
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime]
    deleted_at: Optional[datetime]
    active_assignee_ids: List[int] = []

    class Config:
        from_attributes = True


class TaskPermissionsOut(BaseModel):
    can_edit: bool
    can_delete: bool

    class Config:
        from_attributes = True


class ActivityOut(BaseModel):
    id: int
    staff_id: int
    staff_name: Optional[str] = None
    action: str
    timestamp: datetime

    class Config:
        from_attributes = True


class TaskDetailOut(BaseModel):
    task: TaskOut
    subtasks: List[TaskOut] = []
    permissions: TaskPermissionsOut
    history: List[ActivityOut] = []


class TaskUpdateResponse(BaseModel):
    task: TaskOut
    replicated_task: Optional[TaskOut] = None
    replication_failures: List[str] = []


class AssigneesUpdateResponse(BaseModel):
    task_id: int
    active_assignee_ids: List[int]
    added: List[int]
    removed: List[int]


class ReplicatedTaskOut(BaseModel):
    original_id: int
    new_id: int
    title: str

    class Config:
        from_attributes = True


class SweepResponse(BaseModel):
    message: str
    processed: int
    created: int
    failed: int
    tasks: List[ReplicatedTaskOut] = []


class NotificationOut(BaseModel):
    id: int
    task_id: Optional[int]
    triggered_by_id: Optional[int]
    notification_type: str
    title: str
    message: Optional[str]
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListOut(BaseModel):
    notifications: List[NotificationOut] = []
    unread_count: int


class BulkUpdateResponse(BaseModel):
    message: str
    count: int
