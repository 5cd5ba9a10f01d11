from datetime import date, datetime

import pytest

from taskhub.activity import list_task_history
from taskhub.crud import (
    create_task,
    list_overdue_tasks,
    list_visible_tasks,
    set_task_assignees,
    soft_delete_task,
    update_task,
)
from taskhub.errors import AssigneeLimitError, Forbidden
from taskhub.models import ActivityLog, Notification, Task, TaskAssignee, TaskStatus
from taskhub.notifications import NOTIFY_ASSIGNED, NOTIFY_UNASSIGNED
from taskhub.permissions import Actor
from taskhub.store import get_active_assignee_ids, get_direct_subtasks


def test_create_task_with_subtasks(db, make_staff):
    sam = make_staff("Sam")
    ann = make_staff("Ann", "Account Managers")

    task = create_task(
        db,
        creator=sam,
        title="  Quarterly review ",
        assignee_ids=[sam.id, ann.id],
        priority=4,
        tags=["finance", "finance", " q1 "],
        subtasks=[{"title": "Gather numbers", "assignee_ids": [ann.id]}],
    )

    assert task.title == "Quarterly review"
    assert task.notes == "No notes..."
    assert TaskStatus(task.status) == TaskStatus.not_started
    assert task.tags == ["finance", "q1"]
    assert sorted(get_active_assignee_ids(db, task.id)) == sorted([sam.id, ann.id])

    subs = get_direct_subtasks(db, task.id)
    assert [s.title for s in subs] == ["Gather numbers"]
    assert subs[0].priority == 4
    assert get_active_assignee_ids(db, subs[0].id) == [ann.id]

    # The creator is not notified about their own assignment.
    notified = db.query(Notification).filter_by(notification_type=NOTIFY_ASSIGNED).all()
    assert sorted((n.staff_id, n.task_id) for n in notified) == sorted([(ann.id, task.id), (ann.id, subs[0].id)])
    assert db.query(ActivityLog).filter_by(task_id=task.id, action="Created task").count() == 1


def test_recurring_task_due_date_follows_start(db, make_staff):
    sam = make_staff("Sam")
    task = create_task(
        db,
        creator=sam,
        title="Backups",
        assignee_ids=[sam.id],
        start_date=date(2024, 3, 1),
        due_date=date(2024, 3, 30),
        repeat_interval=7,
    )
    assert task.due_date == date(2024, 3, 8)


@pytest.mark.parametrize("ids", [[], list(range(1, 7))])
def test_assignee_count_is_limited(db, make_staff, ids):
    sam = make_staff("Sam")
    with pytest.raises(AssigneeLimitError):
        create_task(db, creator=sam, title="x", assignee_ids=ids)
    assert db.query(Task).count() == 0


@pytest.mark.parametrize("priority", [0, 11])
def test_priority_out_of_range(db, make_staff, priority):
    sam = make_staff("Sam")
    with pytest.raises(ValueError, match="priority"):
        create_task(db, creator=sam, title="x", assignee_ids=[sam.id], priority=priority)


def test_subtasks_nest_one_level(db, make_staff):
    sam = make_staff("Sam")
    parent = create_task(db, creator=sam, title="Parent", assignee_ids=[sam.id])
    child = create_task(db, creator=sam, title="Child", assignee_ids=[sam.id], parent_task_id=parent.id)

    with pytest.raises(ValueError, match="Subtasks cannot have subtasks"):
        create_task(db, creator=sam, title="Grandchild", assignee_ids=[sam.id], parent_task_id=child.id)


def test_unknown_assignee_is_rejected(db, make_staff):
    sam = make_staff("Sam")
    with pytest.raises(ValueError, match="Staff not found: 999"):
        create_task(db, creator=sam, title="x", assignee_ids=[999])


def test_completing_recurring_task_replicates_it(db, make_staff):
    sam = make_staff("Sam")
    task = create_task(
        db,
        creator=sam,
        title="Daily standup notes",
        assignee_ids=[sam.id],
        due_date=date(2024, 1, 14),
        repeat_interval=1,
    )

    updated, result = update_task(db, task=task, actor=Actor.from_staff(sam), status="completed")

    assert TaskStatus(updated.status) == TaskStatus.completed
    assert updated.completed_at is not None
    assert updated.repeat_interval == 0
    assert result is not None and result.created
    assert result.new_task.due_date == date(2024, 1, 15)
    assert get_active_assignee_ids(db, result.new_task.id) == [sam.id]
    assert db.query(ActivityLog).filter_by(task_id=task.id, action="Marked task as completed").count() == 1


def test_reopening_clears_completed_at(db, make_staff):
    sam = make_staff("Sam")
    task = create_task(db, creator=sam, title="x", assignee_ids=[sam.id], status="completed")
    assert task.completed_at is not None

    updated, result = update_task(db, task=task, actor=Actor.from_staff(sam), status="in-progress")
    assert updated.completed_at is None
    assert result is None


def test_update_logs_changes_and_notifies_other_assignees(db, make_staff):
    sam = make_staff("Sam")
    ann = make_staff("Ann", "Account Managers")
    task = create_task(db, creator=sam, title="Old", assignee_ids=[sam.id, ann.id])

    update_task(db, task=task, actor=Actor.from_staff(sam), title="New", notes=None)

    actions = [a.action for a in db.query(ActivityLog).filter_by(task_id=task.id).all()]
    assert "Updated Title: Old -> New; Notes: No notes... -> None" in actions
    updates = db.query(Notification).filter_by(task_id=task.id, notification_type="task_updated").all()
    assert [n.staff_id for n in updates] == [ann.id]


def test_only_assignees_may_update(db, make_staff):
    sam = make_staff("Sam")
    ann = make_staff("Ann", "Account Managers")
    task = create_task(db, creator=sam, title="x", assignee_ids=[ann.id])

    with pytest.raises(Forbidden):
        update_task(db, task=task, actor=Actor.from_staff(sam), title="y")


def test_replace_assignees_reactivates_rows(db, make_staff):
    boss = make_staff("Boss", is_manager=True)
    ann = make_staff("Ann", "Account Managers")
    task = create_task(db, creator=boss, title="x", assignee_ids=[boss.id, ann.id])
    actor = Actor.from_staff(boss)

    added, removed = set_task_assignees(db, task=task, actor=actor, staff_ids=[boss.id])
    assert (added, removed) == ([], [ann.id])
    assert get_active_assignee_ids(db, task.id) == [boss.id]

    added, removed = set_task_assignees(db, task=task, actor=actor, staff_ids=[boss.id, ann.id])
    assert (added, removed) == ([ann.id], [])
    assert sorted(get_active_assignee_ids(db, task.id)) == sorted([boss.id, ann.id])
    assert db.query(TaskAssignee).filter_by(task_id=task.id).count() == 2

    unassigned = db.query(Notification).filter_by(task_id=task.id, notification_type=NOTIFY_UNASSIGNED).all()
    assert [n.staff_id for n in unassigned] == [ann.id]


def test_only_managers_remove_assignees(db, make_staff):
    sam = make_staff("Sam")
    ann = make_staff("Ann", "Account Managers")
    task = create_task(db, creator=sam, title="x", assignee_ids=[sam.id, ann.id])

    with pytest.raises(Forbidden, match="Only managers"):
        set_task_assignees(db, task=task, actor=Actor.from_staff(sam), staff_ids=[sam.id])

    added, removed = set_task_assignees(db, task=task, actor=Actor.from_staff(sam), staff_ids=[sam.id, ann.id])
    assert (added, removed) == ([], [])


def test_soft_delete_cascades_to_descendants(db, make_staff):
    sam = make_staff("Sam")
    task = create_task(
        db,
        creator=sam,
        title="Parent",
        assignee_ids=[sam.id],
        subtasks=[{"title": "a", "assignee_ids": [sam.id]}, {"title": "b", "assignee_ids": [sam.id]}],
    )
    when = datetime(2024, 5, 1, 12, 0)

    deleted = soft_delete_task(db, task=task, actor=Actor.from_staff(sam), when_utc=when)

    assert deleted.deleted_at == when
    db.expire_all()
    rows = db.query(Task).all()
    assert len(rows) == 3
    assert all(t.deleted_at == when for t in rows)
    assert list_visible_tasks(db, actor=Actor.from_staff(sam), include_subtasks=True) == []


def test_creator_outside_assignees_cannot_delete(db, make_staff):
    sam = make_staff("Sam")
    ann = make_staff("Ann", "Account Managers")
    task = create_task(db, creator=sam, title="x", assignee_ids=[ann.id])

    with pytest.raises(Forbidden, match="Only assigned staff can delete"):
        soft_delete_task(db, task=task, actor=Actor.from_staff(sam))
    db.expire_all()
    assert db.get(Task, task.id).deleted_at is None


def test_list_visible_tasks_follows_department_visibility(db, make_staff, make_task):
    sam = make_staff("Sam", "Sales Manager")
    ann = make_staff("Ann", "Account Managers")
    ian = make_staff("Ian", "IT Team")

    mine = make_task(ann, title="Ann's", assignees=[ann], due_date=date(2024, 1, 2))
    make_task(ian, title="Ian's", assignees=[ian])
    unassigned = make_task(sam, title="Unassigned", due_date=date(2024, 1, 1))

    titles = [t.title for t in list_visible_tasks(db, actor=Actor.from_staff(sam))]
    assert titles == [unassigned.title, mine.title]

    assert [t.title for t in list_visible_tasks(db, actor=Actor.from_staff(ann))] == ["Ann's"]
    assert list_visible_tasks(db, actor=Actor.from_staff(ian), status="completed") == []


def test_list_visible_tasks_filters_by_project(db, make_staff, make_task):
    sam = make_staff("Sam")
    billing = make_task(sam, title="Billing", project_id=7)
    make_task(sam, title="Other project", project_id=8)
    make_task(sam, title="No project")

    tasks = list_visible_tasks(db, actor=Actor.from_staff(sam), project_id=7)
    assert [t.id for t in tasks] == [billing.id]


def test_overdue_lists_unfinished_past_due_tasks(db, make_staff, make_task):
    sam = make_staff("Sam")
    ian = make_staff("Ian", "IT Team")
    today = date(2024, 1, 14)

    late = make_task(sam, title="Late", due_date=date(2024, 1, 10))
    parent = make_task(sam, title="Parent", due_date=date(2024, 1, 20))
    late_sub = make_task(sam, title="Late subtask", due_date=date(2024, 1, 12), parent_task_id=parent.id)
    make_task(sam, title="Done", due_date=date(2024, 1, 10), status=TaskStatus.completed)
    make_task(sam, title="Due today", due_date=today)
    make_task(sam, title="Undated")
    make_task(ian, title="Hidden", assignees=[ian], due_date=date(2024, 1, 1))

    overdue = list_overdue_tasks(db, actor=Actor.from_staff(sam), today=today)
    assert [t.id for t in overdue] == [late.id, late_sub.id]


def test_subtasks_cannot_recur_on_their_own(db, make_staff):
    sam = make_staff("Sam")

    with pytest.raises(ValueError, match="Subtask 1: Subtasks cannot repeat on their own"):
        create_task(
            db,
            creator=sam,
            title="Monthly close",
            assignee_ids=[sam.id],
            repeat_interval=30,
            subtasks=[{"title": "Reconcile", "repeat_interval": 2}],
        )
    assert db.query(Task).count() == 0

    parent = create_task(db, creator=sam, title="Monthly close", assignee_ids=[sam.id], repeat_interval=30)
    with pytest.raises(ValueError, match="Subtasks cannot repeat on their own"):
        create_task(db, creator=sam, title="Reconcile", assignee_ids=[sam.id], parent_task_id=parent.id, repeat_interval=1)

    sub = create_task(db, creator=sam, title="Reconcile", assignee_ids=[sam.id], parent_task_id=parent.id)
    with pytest.raises(ValueError, match="Subtasks cannot repeat on their own"):
        update_task(db, task=sub, actor=Actor.from_staff(sam), repeat_interval=3)
    db.expire_all()
    assert db.get(Task, sub.id).repeat_interval == 0


def test_task_history_is_oldest_first_with_names(db, make_staff):
    sam = make_staff("Sam")
    task = create_task(db, creator=sam, title="Audit", assignee_ids=[sam.id])
    update_task(db, task=task, actor=Actor.from_staff(sam), status="in-progress")

    history = list_task_history(db, task.id)
    assert history[0].action == "Created task"
    assert len(history) >= 2
    assert {h.staff_name for h in history} == {"Sam"}
