from datetime import date, datetime

import pytest
from sqlalchemy.orm import sessionmaker

from taskhub.errors import ReplicationSkip, StoreFailure
from taskhub.models import ActivityLog, Task, TaskAssignee, TaskStatus
from taskhub.recurrence import check_eligibility, replicate_completed_task, shift_date
from taskhub.store import clear_repeat_interval, get_active_assignee_ids, get_direct_subtasks


def _completed(make_task, creator, **fields):
    values = {"status": TaskStatus.completed, "completed_at": datetime(2024, 1, 14, 17, 0)}
    values.update(fields)
    return make_task(creator, **values)


def test_daily_task_moves_forward_one_day(db, make_staff, make_task, jan14):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, start_date=date(2024, 1, 13), repeat_interval=1, priority=3)

    result = replicate_completed_task(db, task)

    assert result.created and not result.partial
    assert result.guard_cleared
    new = result.new_task
    assert new.due_date == date(2024, 1, 15)
    assert new.start_date == date(2024, 1, 14)
    assert TaskStatus(new.status) == TaskStatus.not_started
    assert new.repeat_interval == 1
    assert new.completed_at is None
    assert new.priority == 3
    assert new.title == task.title

    db.expire_all()
    assert db.get(Task, task.id).repeat_interval == 0


def test_late_completion_produces_next_missed_occurrence(db, make_staff, make_task):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=date(2024, 1, 1), repeat_interval=7)
    result = replicate_completed_task(db, task)
    assert result.new_task.due_date == date(2024, 1, 8)


def test_only_active_assignees_are_copied(db, make_staff, make_task, jan14):
    a, b, c = make_staff("A"), make_staff("B"), make_staff("C")
    task = _completed(make_task, a, due_date=jan14, repeat_interval=1, assignees=[a, b, c])
    row = db.query(TaskAssignee).filter_by(task_id=task.id, staff_id=c.id).one()
    row.is_active = False
    db.commit()

    result = replicate_completed_task(db, task)
    assert sorted(get_active_assignee_ids(db, result.new_task.id)) == sorted([a.id, b.id])


def test_subtasks_are_copied_without_recurrence(db, make_staff, make_task, jan14):
    s, helper = make_staff("Sam"), make_staff("Hal")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=7, assignees=[s])
    make_task(
        s,
        title="Collect numbers",
        parent_task_id=task.id,
        due_date=date(2024, 1, 12),
        repeat_interval=3,
        status=TaskStatus.completed,
        assignees=[helper],
    )
    make_task(s, title="Gone", parent_task_id=task.id, deleted_at=datetime(2024, 1, 10))

    result = replicate_completed_task(db, task)

    assert result.subtasks_created == 1
    copies = get_direct_subtasks(db, result.new_task.id)
    assert [c.title for c in copies] == ["Collect numbers"]
    copy = copies[0]
    assert copy.repeat_interval == 0
    assert copy.due_date == date(2024, 1, 19)
    assert TaskStatus(copy.status) == TaskStatus.not_started
    assert get_active_assignee_ids(db, copy.id) == [helper.id]


def test_history_is_not_copied(db, make_staff, make_task, jan14):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=1)
    db.add(ActivityLog(task_id=task.id, staff_id=s.id, action="Updated Notes: None -> hi"))
    db.commit()

    result = replicate_completed_task(db, task)

    actions = [a.action for a in db.query(ActivityLog).filter_by(task_id=result.new_task.id).all()]
    assert actions == ["Created task"]


@pytest.mark.parametrize(
    "fields, reason",
    [
        ({"repeat_interval": 0}, ReplicationSkip.no_repeat_interval),
        ({"due_date": None}, ReplicationSkip.no_due_date),
        ({"status": TaskStatus.in_progress}, ReplicationSkip.not_completed),
        ({"deleted_at": datetime(2024, 1, 15)}, ReplicationSkip.deleted),
    ],
)
def test_ineligible_tasks_are_skipped(db, make_staff, make_task, jan14, fields, reason):
    s = make_staff("Sam")
    values = {"due_date": jan14, "repeat_interval": 1}
    values.update(fields)
    task = _completed(make_task, s, **values)

    assert check_eligibility(task) == reason
    result = replicate_completed_task(db, task)
    assert not result.created
    assert result.skipped.reason == reason
    assert db.query(Task).count() == 1


def test_failed_insert_leaves_source_for_retry(db, make_staff, make_task, jan14, monkeypatch):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=1)

    def boom(db, **fields):
        raise StoreFailure("insert_task failed: OperationalError")

    monkeypatch.setattr("taskhub.recurrence.insert_task", boom)
    with pytest.raises(StoreFailure):
        replicate_completed_task(db, task)

    db.expire_all()
    assert db.get(Task, task.id).repeat_interval == 1


def test_cascade_failure_keeps_new_task_and_clears_guard(db, make_staff, make_task, jan14, monkeypatch):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=1, assignees=[s])

    def boom(db, parent_id):
        raise StoreFailure("get_direct_subtasks failed: OperationalError")

    monkeypatch.setattr("taskhub.recurrence.get_direct_subtasks", boom)
    result = replicate_completed_task(db, task)

    assert result.partial
    assert [f.step for f in result.failures] == ["load subtasks"]
    assert result.guard_cleared
    assert get_active_assignee_ids(db, result.new_task.id) == [s.id]


def test_guard_already_cleared_is_reported(db, make_staff, make_task, jan14, monkeypatch):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=1)
    monkeypatch.setattr("taskhub.recurrence.clear_repeat_interval", lambda db, task_id: False)

    result = replicate_completed_task(db, task)
    assert result.created
    assert result.guard_cleared is False


def test_clear_repeat_interval_is_conditional(db, make_staff, make_task, jan14):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=0)
    stamp = task.updated_at

    assert clear_repeat_interval(db, task.id) is False

    db.expire_all()
    row = db.get(Task, task.id)
    assert row.repeat_interval == 0
    assert row.updated_at == stamp


def test_interval_cleared_by_another_session_before_guard(db, engine, make_staff, make_task, jan14):
    s = make_staff("Sam")
    task = _completed(make_task, s, due_date=jan14, repeat_interval=1)

    # Another worker wins the race after this session loaded the task.
    other = sessionmaker(bind=engine)()
    try:
        other.query(Task).filter(Task.id == task.id).update({Task.repeat_interval: 0}, synchronize_session=False)
        other.commit()
    finally:
        other.close()

    result = replicate_completed_task(db, task)

    assert result.created
    assert result.guard_cleared is False
    db.expire_all()
    assert db.get(Task, task.id).repeat_interval == 0


def test_shift_date():
    assert shift_date(None, 3) is None
    assert shift_date(date(2024, 2, 28), 2) == date(2024, 3, 1)
