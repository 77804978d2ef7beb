"""Persistence contract used by plan generation and adaptation, plus an in-memory implementation.

The in-memory store keeps one dict per entity and hands out copies, so callers
can only change stored records through the narrow update methods. Its whole
state round-trips through a JSON snapshot validated by the pydantic models.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from models import (
    Alert,
    AlertType,
    DiagnosticResult,
    Learner,
    Performance,
    StudyPlan,
    Task,
    TaskStatus,
    TimeOfDay,
    Topic,
)
from models_pydantic import (
    AlertPydantic,
    DiagnosticPydantic,
    LearnerPydantic,
    PerformancePydantic,
    StateSnapshotPydantic,
    StudyPlanPydantic,
    TaskPydantic,
    TopicPydantic,
    to_record,
)

logger = logging.getLogger(__name__)

UPDATABLE_TASK_FIELDS = {
    "start_time",
    "end_time",
    "original_start_time",
    "original_end_time",
    "difficulty",
    "status",
}

ALLOWED_STATUS_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.SKIPPED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.SKIPPED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.SKIPPED: set(),
}


class PlanStore(Protocol):
    async def list_topics(self) -> List[Topic]: ...

    async def get_topic(self, topic_id: str) -> Optional[Topic]: ...

    async def get_learner(self, learner_id: str) -> Optional[Learner]: ...

    async def update_preferred_study_time(self, learner_id: str, preferred: TimeOfDay) -> None: ...

    async def get_latest_diagnostic(self, learner_id: str) -> Optional[DiagnosticResult]: ...

    async def get_plan_by_learner(self, learner_id: str) -> Optional[StudyPlan]: ...

    async def create_plan(self, plan: StudyPlan) -> StudyPlan: ...

    async def update_plan(
        self,
        plan_id: str,
        current_version: Optional[int] = None,
        is_personalized: Optional[bool] = None,
    ) -> StudyPlan: ...

    async def create_task(self, task: Task) -> Task: ...

    async def list_tasks(
        self,
        plan_id: str,
        status: Optional[TaskStatus] = None,
        start_after: Optional[datetime] = None,
        end_before: Optional[datetime] = None,
    ) -> List[Task]: ...

    async def update_task(self, task_id: str, **fields) -> Task: ...

    async def list_performances(self, learner_id: str, topic_id: Optional[str] = None) -> List[Performance]: ...

    async def create_alert(self, alert: Alert) -> Alert: ...

    async def list_unresolved_alerts(self, learner_id: str, alert_type: Optional[AlertType] = None) -> List[Alert]: ...

    async def resolve_alert(self, alert_id: str, resolved_at: Optional[datetime] = None) -> bool: ...


class InMemoryStore:
    def __init__(self) -> None:
        self.topics: Dict[str, Topic] = {}
        self.learners: Dict[str, Learner] = {}
        self.diagnostics: List[DiagnosticResult] = []
        self.plans: Dict[str, StudyPlan] = {}
        self.tasks: Dict[str, Task] = {}
        self.performances: Dict[str, Performance] = {}
        self.alerts: Dict[str, Alert] = {}

    # topics

    async def list_topics(self) -> List[Topic]:
        return [copy.deepcopy(t) for t in self.topics.values()]

    async def get_topic(self, topic_id: str) -> Optional[Topic]:
        topic = self.topics.get(topic_id)
        return copy.deepcopy(topic) if topic else None

    async def add_topic(self, topic: Topic) -> Topic:
        self.topics[topic.topic_id] = copy.deepcopy(topic)
        return topic

    # learners

    async def get_learner(self, learner_id: str) -> Optional[Learner]:
        learner = self.learners.get(learner_id)
        return copy.deepcopy(learner) if learner else None

    async def add_learner(self, learner: Learner) -> Learner:
        self.learners[learner.learner_id] = copy.deepcopy(learner)
        return learner

    async def update_preferred_study_time(self, learner_id: str, preferred: TimeOfDay) -> None:
        if learner_id not in self.learners:
            raise KeyError(f"Unknown learner: {learner_id}")
        self.learners[learner_id].preferences.preferred_study_time = TimeOfDay(preferred)

    # diagnostics

    async def get_latest_diagnostic(self, learner_id: str) -> Optional[DiagnosticResult]:
        results = [d for d in self.diagnostics if d.learner_id == learner_id]
        if not results:
            return None
        # stable max keeps the last inserted among equal timestamps
        latest = results[0]
        for result in results[1:]:
            if (result.created_at or datetime.min) >= (latest.created_at or datetime.min):
                latest = result
        return copy.deepcopy(latest)

    async def save_diagnostic(self, diagnostic: DiagnosticResult) -> DiagnosticResult:
        self.diagnostics.append(copy.deepcopy(diagnostic))
        return diagnostic

    # plans

    async def get_plan_by_learner(self, learner_id: str) -> Optional[StudyPlan]:
        for plan in self.plans.values():
            if plan.learner_id == learner_id:
                return copy.deepcopy(plan)
        return None

    async def create_plan(self, plan: StudyPlan) -> StudyPlan:
        if plan.plan_id in self.plans:
            raise ValueError(f"Plan {plan.plan_id} already exists")
        self.plans[plan.plan_id] = copy.deepcopy(plan)
        return copy.deepcopy(plan)

    async def update_plan(
        self,
        plan_id: str,
        current_version: Optional[int] = None,
        is_personalized: Optional[bool] = None,
    ) -> StudyPlan:
        if plan_id not in self.plans:
            raise KeyError(f"Unknown plan: {plan_id}")
        plan = self.plans[plan_id]
        if current_version is not None:
            plan.current_version = current_version
        if is_personalized is not None:
            plan.is_personalized = is_personalized
        return copy.deepcopy(plan)

    # tasks

    async def create_task(self, task: Task) -> Task:
        if task.task_id in self.tasks:
            raise ValueError(f"Task {task.task_id} already exists")
        if task.topic_id not in self.topics:
            raise ValueError(f"Task {task.task_id} references unknown topic {task.topic_id}")
        _check_duration(task.task_id, task.start_time, task.end_time, task.duration)
        self.tasks[task.task_id] = copy.deepcopy(task)
        return copy.deepcopy(task)

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self.tasks.get(task_id)
        return copy.deepcopy(task) if task else None

    async def list_tasks(
        self,
        plan_id: str,
        status: Optional[TaskStatus] = None,
        start_after: Optional[datetime] = None,
        end_before: Optional[datetime] = None,
    ) -> List[Task]:
        tasks = [t for t in self.tasks.values() if t.plan_id == plan_id]
        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        if start_after is not None:
            tasks = [t for t in tasks if t.start_time > start_after]
        if end_before is not None:
            tasks = [t for t in tasks if t.end_time < end_before]
        return [copy.deepcopy(t) for t in sorted(tasks, key=lambda t: t.start_time)]

    async def update_task(self, task_id: str, **fields) -> Task:
        """Apply a field-scoped update; rejects unknown fields and illegal changes."""
        if task_id not in self.tasks:
            raise KeyError(f"Unknown task: {task_id}")
        disallowed = set(fields) - UPDATABLE_TASK_FIELDS
        if disallowed:
            raise ValueError(f"Fields not updatable on tasks: {sorted(disallowed)}")

        task = self.tasks[task_id]
        start = fields.get("start_time", task.start_time)
        end = fields.get("end_time", task.end_time)
        _check_duration(task_id, start, end, task.duration)

        for name in ("original_start_time", "original_end_time"):
            current = getattr(task, name)
            if name in fields and current is not None and fields[name] != current:
                raise ValueError(f"Task {task_id}: {name} is already set")

        if "status" in fields:
            new_status = TaskStatus(fields["status"])
            if new_status != task.status and new_status not in ALLOWED_STATUS_TRANSITIONS[task.status]:
                raise ValueError(f"Task {task_id}: cannot move from {task.status.value} to {new_status.value}")
            fields["status"] = new_status

        for name, value in fields.items():
            setattr(task, name, value)
        return copy.deepcopy(task)

    # performances

    async def list_performances(self, learner_id: str, topic_id: Optional[str] = None) -> List[Performance]:
        records = [p for p in self.performances.values() if p.learner_id == learner_id]
        if topic_id is not None:
            records = [p for p in records if p.topic_id == topic_id]
        return [copy.deepcopy(p) for p in records]

    async def add_performance(self, performance: Performance) -> Performance:
        self.performances[performance.performance_id] = copy.deepcopy(performance)
        return performance

    # alerts

    async def create_alert(self, alert: Alert) -> Alert:
        self.alerts[alert.alert_id] = copy.deepcopy(alert)
        return copy.deepcopy(alert)

    async def list_unresolved_alerts(self, learner_id: str, alert_type: Optional[AlertType] = None) -> List[Alert]:
        alerts = [a for a in self.alerts.values() if a.learner_id == learner_id and not a.is_resolved]
        if alert_type is not None:
            alerts = [a for a in alerts if a.alert_type == alert_type]
        return [copy.deepcopy(a) for a in alerts]

    async def resolve_alert(self, alert_id: str, resolved_at: Optional[datetime] = None) -> bool:
        if alert_id not in self.alerts:
            raise KeyError(f"Unknown alert: {alert_id}")
        alert = self.alerts[alert_id]
        if alert.is_resolved:
            return False
        alert.is_resolved = True
        alert.resolved_at = resolved_at or datetime.now()
        return True

    # snapshots

    def to_snapshot(self) -> Dict:
        return {
            "topics": [to_record(TopicPydantic, t) for t in self.topics.values()],
            "learners": [to_record(LearnerPydantic, learner) for learner in self.learners.values()],
            "diagnostics": [to_record(DiagnosticPydantic, d) for d in self.diagnostics],
            "plans": [to_record(StudyPlanPydantic, p) for p in self.plans.values()],
            "tasks": [to_record(TaskPydantic, t) for t in sorted(self.tasks.values(), key=lambda t: t.start_time)],
            "performances": [to_record(PerformancePydantic, p) for p in self.performances.values()],
            "alerts": [to_record(AlertPydantic, a) for a in self.alerts.values()],
        }

    @classmethod
    def from_snapshot(cls, data: Dict) -> "InMemoryStore":
        snapshot = StateSnapshotPydantic.model_validate(data)
        store = cls()
        store.topics = {t.topic_id: t.to_model() for t in snapshot.topics}
        store.learners = {learner.learner_id: learner.to_model() for learner in snapshot.learners}
        store.diagnostics = [d.to_model() for d in snapshot.diagnostics]
        store.plans = {p.plan_id: p.to_model() for p in snapshot.plans}
        store.tasks = {t.task_id: t.to_model() for t in snapshot.tasks}
        store.performances = {p.performance_id: p.to_model() for p in snapshot.performances}
        store.alerts = {a.alert_id: a.to_model() for a in snapshot.alerts}
        logger.debug(
            "Loaded snapshot: %d topics, %d learners, %d tasks, %d alerts",
            len(store.topics),
            len(store.learners),
            len(store.tasks),
            len(store.alerts),
        )
        return store

    @classmethod
    def load(cls, path: Path) -> "InMemoryStore":
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_snapshot(json.load(f))

    def save(self, path: Path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_snapshot(), f, indent=2, ensure_ascii=False)


def _check_duration(task_id: str, start: datetime, end: datetime, duration: int) -> None:
    minutes = (end - start).total_seconds() / 60
    if minutes != duration:
        raise ValueError(f"Task {task_id}: window of {minutes:g} min does not match duration {duration}")


async def resolve_alerts(store: PlanStore, alerts: List[Alert], resolved_at: Optional[datetime] = None) -> List[str]:
    """Resolve each alert once; returns the ids this call actually flipped."""
    resolved = []
    for alert in alerts:
        if await store.resolve_alert(alert.alert_id, resolved_at):
            resolved.append(alert.alert_id)
    return resolved
