import copy
import itertools
from datetime import date, datetime, timedelta

import pytest

from adaptation_engine import AdaptationEngine
from models import Difficulty, Learner, Performance, StudyPlan, Task, TaskType, Topic
from store import InMemoryStore

# Tuesday
NOW = datetime(2025, 3, 11, 10, 0)
EXAM = date(2025, 4, 15)


@pytest.fixture
def topics():
    return [
        Topic("anatomy", "Anatomy", "BIOSCIENCE", Difficulty.EASY, importance=6, estimated_duration=60),
        Topic("physiology", "Physiology", "BIOSCIENCE", Difficulty.MEDIUM, importance=7, estimated_duration=90, prerequisites=["anatomy"]),
        Topic("pharm", "Pharmacology", "PHARMACOLOGY", Difficulty.HARD, importance=9, estimated_duration=120, prerequisites=["physiology"]),
        Topic("ethics", "Ethics", "PRACTICE", Difficulty.EASY, importance=4, estimated_duration=45),
    ]


@pytest.fixture
def learner():
    return Learner("learner-1", "Sam", exam_date=EXAM)


@pytest.fixture
def plan():
    return StudyPlan("plan-1", "learner-1", date(2025, 3, 10), date(2025, 4, 14), EXAM)


@pytest.fixture
def store(topics, learner, plan):
    """A store holding the catalog, one learner and that learner's (empty) plan."""
    s = InMemoryStore()
    s.topics = {t.topic_id: copy.deepcopy(t) for t in topics}
    s.learners = {learner.learner_id: copy.deepcopy(learner)}
    s.plans = {plan.plan_id: copy.deepcopy(plan)}
    return s


@pytest.fixture
def make_task(plan):
    counter = itertools.count(1)

    def _make(topic_id, start, duration=60, **kwargs):
        task_id = kwargs.pop("task_id", f"task-{next(counter)}")
        task_type = kwargs.pop("task_type", TaskType.READING)
        return Task(
            task_id=task_id,
            plan_id=kwargs.pop("plan_id", plan.plan_id),
            topic_id=topic_id,
            task_type=task_type,
            start_time=start,
            end_time=start + timedelta(minutes=duration),
            duration=duration,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_performance():
    counter = itertools.count(1)

    def _make(topic_id, score=None, confidence=3, completed=True, task_id="", created_at=None, learner_id="learner-1"):
        return Performance(
            performance_id=f"perf-{next(counter)}",
            learner_id=learner_id,
            task_id=task_id,
            topic_id=topic_id,
            confidence=confidence,
            completed=completed,
            score=score,
            created_at=created_at,
        )

    return _make


@pytest.fixture
def add_records(store):
    """Put tasks, performances and alerts straight into the store."""

    def _add(tasks=(), performances=(), alerts=()):
        for task in tasks:
            store.tasks[task.task_id] = copy.deepcopy(task)
        for record in performances:
            store.performances[record.performance_id] = copy.deepcopy(record)
        for alert in alerts:
            store.alerts[alert.alert_id] = copy.deepcopy(alert)

    return _add


@pytest.fixture
def load_snapshot(store):
    async def _load(now=NOW, learner_id="learner-1"):
        return await AdaptationEngine(store).load_snapshot(learner_id, now)

    return _load
