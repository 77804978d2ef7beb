from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from statistics import mean
from typing import List, Optional

from models import (
    AdaptationAction,
    AdaptationActionType,
    AdaptationSnapshot,
    Difficulty,
    Task,
    TaskStatus,
    TaskType,
)
from review_scheduler import performance_factor, review_interval_days
from slot_finder import find_available_time_slot
from store import PlanStore

logger = logging.getLogger(__name__)

REVIEW_SESSION_MINUTES = 30


def review_difficulty(avg_score: Optional[float]) -> Difficulty:
    if avg_score is not None and avg_score >= 85:
        return Difficulty.HARD
    if avg_score is not None and avg_score >= 70:
        return Difficulty.MEDIUM
    return Difficulty.EASY


class SpacedRepetitionManager:
    """Schedule the next review of each studied topic from real completion history."""

    name = "spaced_repetition"

    async def run(self, store: PlanStore, snapshot: AdaptationSnapshot) -> List[AdaptationAction]:
        now = snapshot.now
        exam_date = snapshot.plan.exam_date
        prefs = snapshot.learner.preferences
        completed = [t for t in snapshot.tasks if t.status == TaskStatus.COMPLETED]
        studied_topics = sorted({t.topic_id for t in completed})
        by_topic = snapshot.performances_by_topic()
        busy = snapshot.busy
        tomorrow = now.date() + timedelta(days=1)
        actions: List[AdaptationAction] = []

        for topic_id in studied_topics:
            topic = snapshot.topics.get(topic_id)
            if topic is None:
                logger.warning("Completed tasks reference unknown topic %s; skipping", topic_id)
                continue
            records = [r for r in by_topic.get(topic_id, []) if r.completed and r.created_at is not None]
            if not records:
                continue

            review_index = sum(1 for t in completed if t.topic_id == topic_id and t.is_review)
            scores = [r.score for r in records if r.score is not None]
            avg_score = mean(scores) if scores else None
            interval = review_interval_days(topic.difficulty, review_index, performance_factor(avg_score))
            review_at = max(r.created_at for r in records) + timedelta(days=interval)

            if review_at <= now or review_at.date() >= exam_date:
                continue
            already_pending = any(
                t.topic_id == topic_id and t.is_review and t.status == TaskStatus.PENDING and t.start_time > now
                for t in snapshot.tasks
            )
            if already_pending:
                continue

            slot = find_available_time_slot(
                REVIEW_SESSION_MINUTES, busy, prefs, max(review_at.date(), tomorrow), exam_date
            )
            if slot is None:
                logger.info("No slot for review of %s on or after %s", topic_id, review_at.date())
                continue

            snapshot.reserve(slot)
            task = await store.create_task(
                Task(
                    task_id=str(uuid.uuid4()),
                    plan_id=snapshot.plan.plan_id,
                    topic_id=topic_id,
                    task_type=TaskType.REVIEW,
                    start_time=slot[0],
                    end_time=slot[1],
                    duration=REVIEW_SESSION_MINUTES,
                    difficulty=review_difficulty(avg_score),
                    title=f"Review: {topic.name}",
                    description=f"Spaced review #{review_index + 1} of {topic.name}",
                    created_at=now,
                )
            )
            actions.append(
                AdaptationAction(
                    action_type=AdaptationActionType.ADD_REVIEW_SESSION,
                    description=f"Added review of {topic.name} on {slot[0]:%Y-%m-%d %H:%M}",
                    affected_task_ids=[task.task_id],
                    metadata={"topic_id": topic_id, "interval_days": interval, "review_index": review_index},
                )
            )
        return actions
