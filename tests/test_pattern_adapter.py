from datetime import datetime, timedelta

import pytest

from models import AdaptationActionType, Alert, AlertType, Severity, TaskStatus, TimeOfDay
from pattern_adapter import PatternAdapter, bucket_for_hour, dominant_bucket


def _evening_history(make_task, make_performance, hours=(18, 19, 20)):
    tasks, records = [], []
    for i, hour in enumerate(hours):
        task = make_task("anatomy", datetime(2025, 3, 3 + i, 9, 0), status=TaskStatus.COMPLETED)
        tasks.append(task)
        records.append(make_performance("anatomy", 80, 4, task_id=task.task_id, created_at=datetime(2025, 3, 3 + i, hour, 0)))
    return tasks, records


@pytest.mark.parametrize(
    "hour, bucket",
    [(5, TimeOfDay.MORNING), (11, TimeOfDay.MORNING), (12, TimeOfDay.AFTERNOON), (17, TimeOfDay.EVENING), (21, TimeOfDay.NIGHT), (2, TimeOfDay.NIGHT)],
)
def test_bucket_for_hour(hour, bucket):
    assert bucket_for_hour(hour) == bucket


def test_dominant_bucket_needs_strict_plurality():
    morning, evening = datetime(2025, 3, 3, 8), datetime(2025, 3, 3, 18)
    assert dominant_bucket([morning, evening, evening]) == TimeOfDay.EVENING
    assert dominant_bucket([morning, evening]) is None
    assert dominant_bucket([]) is None


@pytest.mark.asyncio
async def test_future_tasks_move_into_evening(store, make_task, make_performance, add_records, load_snapshot):
    history, records = _evening_history(make_task, make_performance)
    upcoming = [make_task("ethics", datetime(2025, 3, 12, 9, 0)), make_task("ethics", datetime(2025, 3, 13, 10, 0))]
    alert = Alert("a1", "learner-1", "plan-1", AlertType.STUDY_PATTERN, Severity.LOW, "Studies late")
    add_records(tasks=history + upcoming, performances=records, alerts=[alert])

    actions = await PatternAdapter().run(store, await load_snapshot())

    assert len(actions) == 1
    assert actions[0].action_type == AdaptationActionType.ADJUST_TO_STUDY_PATTERN
    assert sorted(actions[0].affected_task_ids) == sorted(t.task_id for t in upcoming)
    assert store.tasks[upcoming[0].task_id].start_time == datetime(2025, 3, 12, 19, 0)
    assert store.tasks[upcoming[1].task_id].start_time == datetime(2025, 3, 13, 19, 0)
    assert store.tasks[upcoming[0].task_id].original_start_time == datetime(2025, 3, 12, 9, 0)
    assert store.learners["learner-1"].preferences.preferred_study_time == TimeOfDay.EVENING
    assert store.alerts["a1"].is_resolved
    assert actions[0].metadata["preference_updated"] is True


@pytest.mark.asyncio
async def test_falls_back_to_window_start_when_midpoint_is_taken(store, make_task, make_performance, add_records, load_snapshot):
    history, records = _evening_history(make_task, make_performance)
    late = make_task("pharm", datetime(2025, 3, 12, 19, 0), 180)
    early = make_task("ethics", datetime(2025, 3, 12, 9, 0))
    add_records(tasks=history + [late, early], performances=records)
    await PatternAdapter().run(store, await load_snapshot())
    assert store.tasks[early.task_id].start_time == datetime(2025, 3, 12, 17, 0)
    assert store.tasks[late.task_id].start_time == datetime(2025, 3, 12, 19, 0)


@pytest.mark.asyncio
async def test_matching_preference_changes_nothing(store, make_task, make_performance, add_records, load_snapshot):
    store.learners["learner-1"].preferences.preferred_study_time = TimeOfDay.EVENING
    history, records = _evening_history(make_task, make_performance)
    upcoming = [make_task("ethics", datetime(2025, 3, 12, 9, 0)), make_task("ethics", datetime(2025, 3, 13, 9, 0))]
    add_records(tasks=history + upcoming, performances=records)
    assert await PatternAdapter().run(store, await load_snapshot()) == []


@pytest.mark.asyncio
async def test_too_little_history_changes_nothing(store, make_task, make_performance, add_records, load_snapshot):
    history, records = _evening_history(make_task, make_performance, hours=(19,))
    upcoming = [make_task("ethics", datetime(2025, 3, 12, 9, 0)), make_task("ethics", datetime(2025, 3, 13, 9, 0))]
    add_records(tasks=history + upcoming, performances=records)
    assert await PatternAdapter().run(store, await load_snapshot()) == []


@pytest.mark.asyncio
async def test_task_end_time_used_without_performance_record(store, make_task, add_records, load_snapshot):
    history = [
        make_task("anatomy", datetime(2025, 3, 3 + i, 13, 0), status=TaskStatus.COMPLETED) for i in range(3)
    ]
    upcoming = [make_task("ethics", datetime(2025, 3, 12, 9, 0)), make_task("ethics", datetime(2025, 3, 13, 9, 0))]
    alert = Alert("a1", "learner-1", "plan-1", AlertType.STUDY_PATTERN, Severity.LOW, "Afternoons")
    add_records(tasks=history + upcoming, alerts=[alert])
    actions = await PatternAdapter().run(store, await load_snapshot())
    assert actions[0].metadata["detected"] == "afternoon"
    assert store.tasks[upcoming[0].task_id].start_time == datetime(2025, 3, 12, 14, 0)


@pytest.mark.asyncio
async def test_few_moves_keep_preference_and_alert(store, make_task, make_performance, add_records, load_snapshot):
    history, records = _evening_history(make_task, make_performance)
    already_evening = [make_task("ethics", datetime(2025, 3, 13, 18, 0) + timedelta(days=i)) for i in range(18)]
    morning = make_task("ethics", datetime(2025, 3, 12, 9, 0))
    alert = Alert("a1", "learner-1", "plan-1", AlertType.STUDY_PATTERN, Severity.LOW, "Studies late")
    add_records(tasks=history + already_evening + [morning], performances=records, alerts=[alert])

    actions = await PatternAdapter().run(store, await load_snapshot())

    # one of nineteen future tasks moved: under five and under 30%
    assert actions[0].affected_task_ids == [morning.task_id]
    assert store.tasks[morning.task_id].start_time == datetime(2025, 3, 12, 19, 0)
    assert actions[0].metadata["preference_updated"] is False
    assert actions[0].metadata["resolved_alert_ids"] == []
    assert store.learners["learner-1"].preferences.preferred_study_time == TimeOfDay.MORNING
    assert not store.alerts["a1"].is_resolved
