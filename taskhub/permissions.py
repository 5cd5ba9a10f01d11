"""Who may view, edit or delete a task.

Visibility is department based: a viewer sees a task when one of its active
assignees works in a department visible to the viewer, or, for an unassigned
task, when its creator does.

Mutation is assignment based: once a task has active assignees only they may
edit or delete it (authorship alone grants nothing). An unassigned task is
controlled by its creator.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .errors import Forbidden
from .models import Staff, Task
from .store import get_active_assignee_ids
from .visibility import visible_staff_ids


class TaskAction(str, enum.Enum):
    edit = "edit"
    delete = "delete"


class AssignmentState(str, enum.Enum):
    unassigned = "unassigned"
    assigned = "assigned"


@dataclass(frozen=True)
class Actor:
    staff_id: int
    department: Optional[str] = None
    is_manager: bool = False
    is_admin: bool = False

    @classmethod
    def from_staff(cls, staff: Staff) -> "Actor":
        return cls(
            staff_id=int(staff.id),
            department=staff.department,
            is_manager=bool(staff.is_manager),
            is_admin=bool(staff.is_admin),
        )


@dataclass(frozen=True)
class TaskAccess:
    creator_id: int
    active_assignees: frozenset[int]
    task_id: Optional[int] = None

    @classmethod
    def of(cls, creator_id: int, active_assignees: Iterable[int], task_id: Optional[int] = None) -> "TaskAccess":
        return cls(
            creator_id=int(creator_id),
            active_assignees=frozenset(int(s) for s in active_assignees),
            task_id=task_id,
        )

    @property
    def state(self) -> AssignmentState:
        return AssignmentState.assigned if self.active_assignees else AssignmentState.unassigned


@dataclass(frozen=True)
class TaskPermissions:
    can_edit: bool
    can_delete: bool


def can_view(visible_ids: Iterable[int], access: TaskAccess) -> bool:
    visible = set(visible_ids)
    if not visible:
        return False
    if access.active_assignees:
        return not visible.isdisjoint(access.active_assignees)
    return access.creator_id in visible


def can_mutate(actor: Actor, access: TaskAccess, action: TaskAction) -> bool:
    # Edit and delete share one rule.
    if access.active_assignees:
        return int(actor.staff_id) in access.active_assignees
    return int(actor.staff_id) == access.creator_id


def task_permissions(actor: Actor, access: TaskAccess) -> TaskPermissions:
    return TaskPermissions(
        can_edit=can_mutate(actor, access, TaskAction.edit),
        can_delete=can_mutate(actor, access, TaskAction.delete),
    )


def load_task_access(db: Session, task: Task) -> TaskAccess:
    return TaskAccess.of(task.creator_id, get_active_assignee_ids(db, int(task.id)), task_id=int(task.id))


def ensure_can_view(db: Session, actor: Actor, access: TaskAccess) -> None:
    """Raise `Forbidden` unless `actor` can see the task.

    `VisibilityLookupFailed` propagates unchanged.
    """
    visible = visible_staff_ids(db, actor.department)
    if not can_view(visible, access):
        raise Forbidden("You do not have permission to view this task")


def ensure_can_mutate(actor: Actor, access: TaskAccess, action: TaskAction) -> None:
    if can_mutate(actor, access, action):
        return
    if access.state == AssignmentState.assigned:
        raise Forbidden(f"Only assigned staff can {action.value} this task")
    raise Forbidden(f"Only the task creator can {action.value} an unassigned task")


def authorize_task(db: Session, actor: Actor, task: Task, action: Optional[TaskAction] = None) -> TaskAccess:
    """Run the view gate and, when `action` is given, the mutate gate.

    Returns the access snapshot the decision was based on.
    """
    access = load_task_access(db, task)
    ensure_can_view(db, actor, access)
    if action is not None:
        ensure_can_mutate(actor, access, action)
    return access
