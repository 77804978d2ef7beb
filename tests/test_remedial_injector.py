from datetime import datetime

import pytest

from models import AdaptationActionType, Alert, AlertType, Difficulty, Severity, TaskType
from remedial_injector import REMEDIAL_MINUTES, RemedialInjector, remedial_task_type


def _alert(alert_id, topic_id, severity=Severity.HIGH, alert_type=AlertType.LOW_PERFORMANCE):
    return Alert(alert_id, "learner-1", "plan-1", alert_type, severity, "Low scores", related_topic_id=topic_id)


def test_task_type_follows_scores_and_confidence(make_performance):
    assert remedial_task_type([make_performance("pharm", 30, 4)]) == TaskType.READING
    assert remedial_task_type([make_performance("pharm", 70, 2)]) == TaskType.PRACTICE
    assert remedial_task_type([make_performance("pharm", 70, 4)]) == TaskType.VIDEO
    # a record without a score counts as zero
    assert remedial_task_type([make_performance("pharm", None, 5)]) == TaskType.READING
    assert remedial_task_type([]) == TaskType.READING


@pytest.mark.asyncio
async def test_alerted_topic_gets_remedial_session(store, make_performance, add_records, load_snapshot):
    add_records(performances=[make_performance("pharm", 70, 2)], alerts=[_alert("a1", "pharm")])
    actions = await RemedialInjector().run(store, await load_snapshot())

    assert len(actions) == 1
    assert actions[0].action_type == AdaptationActionType.ADD_REMEDIAL_CONTENT
    task = store.tasks[actions[0].affected_task_ids[0]]
    assert task.is_remedial
    assert task.task_type == TaskType.PRACTICE
    assert task.difficulty == Difficulty.EASY
    assert task.duration == REMEDIAL_MINUTES
    assert task.start_time == datetime(2025, 3, 12, 9, 0)
    assert store.alerts["a1"].is_resolved


@pytest.mark.asyncio
async def test_low_severity_and_other_alert_types_are_ignored(store, add_records, load_snapshot):
    add_records(
        alerts=[
            _alert("a1", "pharm", severity=Severity.LOW),
            _alert("a2", "pharm", alert_type=AlertType.MISSED_TASK),
            _alert("a3", "ghost"),
        ]
    )
    assert await RemedialInjector().run(store, await load_snapshot()) == []
    assert not any(a.is_resolved for a in store.alerts.values())


@pytest.mark.asyncio
async def test_pending_remedial_task_is_not_duplicated(store, make_task, add_records, load_snapshot):
    existing = make_task("pharm", datetime(2025, 3, 13, 9, 0), REMEDIAL_MINUTES, is_remedial=True)
    add_records(tasks=[existing], alerts=[_alert("a1", "pharm")])
    assert await RemedialInjector().run(store, await load_snapshot()) == []


@pytest.mark.asyncio
async def test_one_session_per_topic_without_collisions(store, add_records, load_snapshot):
    add_records(
        alerts=[
            _alert("a1", "pharm"),
            _alert("a2", "pharm", alert_type=AlertType.TOPIC_DIFFICULTY, severity=Severity.MEDIUM),
            _alert("a3", "physiology"),
        ]
    )
    actions = await RemedialInjector().run(store, await load_snapshot())
    assert len(actions) == 2
    windows = sorted((t.start_time, t.end_time) for t in store.tasks.values())
    assert windows[0][1] <= windows[1][0]
    assert sorted(actions[0].metadata["resolved_alert_ids"] + actions[1].metadata["resolved_alert_ids"]) == ["a1", "a2", "a3"]
