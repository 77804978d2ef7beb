from datetime import date, datetime, timedelta

import pytest

from missed_tasks import MissedTaskRescheduler
from models import AdaptationActionType, Alert, AlertType, Severity, TaskStatus

from conftest import NOW

MONDAY_10 = datetime(2025, 3, 10, 10, 0)


def _missed_alert(alert_id, task_id):
    return Alert(alert_id, "learner-1", "plan-1", AlertType.MISSED_TASK, Severity.MEDIUM, "Missed", related_task_id=task_id)


@pytest.mark.asyncio
async def test_missed_task_moves_to_first_slot_tomorrow(store, make_task, add_records, load_snapshot):
    task = make_task("anatomy", MONDAY_10)
    add_records(tasks=[task])
    actions = await MissedTaskRescheduler().run(store, await load_snapshot())

    moved = store.tasks[task.task_id]
    assert moved.start_time == datetime(2025, 3, 12, 9, 0)
    assert moved.end_time == datetime(2025, 3, 12, 10, 0)
    assert moved.original_start_time == MONDAY_10
    assert moved.original_end_time == MONDAY_10 + timedelta(hours=1)
    assert moved.duration == 60
    assert [a.action_type for a in actions] == [AdaptationActionType.RESCHEDULE_MISSED_TASK]
    assert actions[0].affected_task_ids == [task.task_id]


@pytest.mark.asyncio
async def test_moved_task_avoids_existing_future_tasks(store, make_task, add_records, load_snapshot):
    missed = make_task("anatomy", MONDAY_10)
    blocker = make_task("ethics", datetime(2025, 3, 12, 9, 0), 90)
    add_records(tasks=[missed, blocker])
    await MissedTaskRescheduler().run(store, await load_snapshot())
    assert store.tasks[missed.task_id].start_time == datetime(2025, 3, 12, 10, 30)


@pytest.mark.asyncio
async def test_several_missed_tasks_do_not_collide(store, make_task, add_records, load_snapshot):
    tasks = [make_task("anatomy", MONDAY_10 - timedelta(days=i)) for i in range(3)]
    add_records(tasks=tasks)
    actions = await MissedTaskRescheduler().run(store, await load_snapshot())
    assert len(actions) == 3
    windows = sorted((store.tasks[t.task_id].start_time, store.tasks[t.task_id].end_time) for t in tasks)
    for (_, end), (start, _) in zip(windows, windows[1:]):
        assert end <= start
    # oldest first gets the earliest slot
    assert store.tasks[tasks[2].task_id].start_time == datetime(2025, 3, 12, 9, 0)


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(store, make_task, add_records, load_snapshot):
    task = make_task("anatomy", MONDAY_10)
    add_records(tasks=[task])
    await MissedTaskRescheduler().run(store, await load_snapshot())
    actions = await MissedTaskRescheduler().run(store, await load_snapshot())
    assert actions == []
    assert store.tasks[task.task_id].original_start_time == MONDAY_10


@pytest.mark.asyncio
async def test_completed_and_running_tasks_are_left_alone(store, make_task, add_records, load_snapshot):
    done = make_task("anatomy", MONDAY_10, status=TaskStatus.COMPLETED)
    ongoing = make_task("ethics", NOW - timedelta(minutes=30))
    add_records(tasks=[done, ongoing])
    assert await MissedTaskRescheduler().run(store, await load_snapshot()) == []


@pytest.mark.asyncio
async def test_related_missed_alert_is_resolved(store, make_task, add_records, load_snapshot):
    task = make_task("anatomy", MONDAY_10)
    add_records(tasks=[task], alerts=[_missed_alert("a1", task.task_id), _missed_alert("a2", "other-task")])
    actions = await MissedTaskRescheduler().run(store, await load_snapshot())
    assert store.alerts["a1"].is_resolved
    assert store.alerts["a1"].resolved_at == NOW
    assert not store.alerts["a2"].is_resolved
    assert actions[0].metadata["resolved_alert_ids"] == ["a1"]


@pytest.mark.asyncio
async def test_task_stays_missed_without_any_slot(store, make_task, add_records, load_snapshot):
    store.plans["plan-1"].exam_date = date(2025, 3, 12)
    # the only candidate day is fully booked
    blocker = make_task("ethics", datetime(2025, 3, 11, 10, 15), 6 * 60 + 45)
    task = make_task("anatomy", MONDAY_10)
    add_records(tasks=[task, blocker])
    actions = await MissedTaskRescheduler().run(store, await load_snapshot())
    assert actions == []
    assert store.tasks[task.task_id].start_time == MONDAY_10
    assert store.tasks[task.task_id].original_start_time is None


@pytest.mark.asyncio
async def test_last_day_before_exam_is_used_as_fallback(store, make_task, add_records, load_snapshot):
    store.plans["plan-1"].exam_date = date(2025, 3, 12)
    task = make_task("anatomy", MONDAY_10)
    add_records(tasks=[task])
    await MissedTaskRescheduler().run(store, await load_snapshot())
    # nothing is left after today, so the rest of today is used
    assert store.tasks[task.task_id].start_time == datetime(2025, 3, 11, 10, 0)
