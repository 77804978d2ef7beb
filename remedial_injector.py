from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import timedelta
from statistics import mean
from typing import Dict, List

from models import (
    PERFORMANCE_ALERT_TYPES,
    AdaptationAction,
    AdaptationActionType,
    AdaptationSnapshot,
    Alert,
    Difficulty,
    Performance,
    Severity,
    Task,
    TaskStatus,
    TaskType,
)
from slot_finder import find_available_time_slot
from store import PlanStore, resolve_alerts

logger = logging.getLogger(__name__)

REMEDIAL_MINUTES = 45


def remedial_task_type(records: List[Performance]) -> TaskType:
    avg_score = mean(r.score or 0 for r in records) if records else 0
    if avg_score < 50:
        return TaskType.READING
    if mean(r.confidence for r in records) < 3:
        return TaskType.PRACTICE
    return TaskType.VIDEO


class RemedialInjector:
    name = "remedial"

    async def run(self, store: PlanStore, snapshot: AdaptationSnapshot) -> List[AdaptationAction]:
        now = snapshot.now
        alerts_by_topic: Dict[str, List[Alert]] = defaultdict(list)
        for alert in snapshot.alerts:
            if alert.alert_type not in PERFORMANCE_ALERT_TYPES:
                continue
            if alert.severity not in (Severity.MEDIUM, Severity.HIGH):
                continue
            if alert.related_topic_id not in snapshot.topics:
                continue
            alerts_by_topic[alert.related_topic_id].append(alert)
        if not alerts_by_topic:
            return []

        by_topic = snapshot.performances_by_topic()
        busy = snapshot.busy
        tomorrow = now.date() + timedelta(days=1)
        actions: List[AdaptationAction] = []

        for topic_id, alerts in alerts_by_topic.items():
            has_pending = any(
                t.topic_id == topic_id and t.is_remedial and t.status == TaskStatus.PENDING for t in snapshot.tasks
            )
            if has_pending:
                continue
            topic = snapshot.topics[topic_id]
            task_type = remedial_task_type(by_topic.get(topic_id, []))
            slot = find_available_time_slot(
                REMEDIAL_MINUTES, busy, snapshot.learner.preferences, tomorrow, snapshot.plan.exam_date
            )
            if slot is None:
                logger.info("No slot for remedial work on %s", topic_id)
                continue

            snapshot.reserve(slot)
            task = await store.create_task(
                Task(
                    task_id=str(uuid.uuid4()),
                    plan_id=snapshot.plan.plan_id,
                    topic_id=topic_id,
                    task_type=task_type,
                    start_time=slot[0],
                    end_time=slot[1],
                    duration=REMEDIAL_MINUTES,
                    difficulty=Difficulty.EASY,
                    title=f"Remedial: {topic.name}",
                    description=f"Extra {task_type.value.lower()} to strengthen {topic.name}",
                    is_remedial=True,
                    created_at=now,
                )
            )
            resolved = await resolve_alerts(store, alerts, now)
            actions.append(
                AdaptationAction(
                    action_type=AdaptationActionType.ADD_REMEDIAL_CONTENT,
                    description=f"Added {task_type.value.lower()} remedial session for {topic.name}",
                    affected_task_ids=[task.task_id],
                    metadata={"topic_id": topic_id, "task_type": task_type.value, "resolved_alert_ids": resolved},
                )
            )
        return actions
