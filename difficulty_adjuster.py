from __future__ import annotations

import logging
from statistics import mean
from typing import Dict, List, Optional, Set, Tuple

from models import (
    PERFORMANCE_ALERT_TYPES,
    AdaptationAction,
    AdaptationActionType,
    AdaptationSnapshot,
    Difficulty,
    Performance,
    Severity,
)
from store import PlanStore, resolve_alerts

logger = logging.getLogger(__name__)

RAISE_SCORE = 85
RAISE_CONFIDENCE = 4
RAISE_TO_HARD_SCORE = 90
LOWER_SCORE = 60
LOWER_CONFIDENCE = 2
LOWER_TO_EASY_SCORE = 50


def topic_averages(records: List[Performance]) -> Tuple[Optional[float], Optional[float]]:
    """Average score over records that carry one, and average confidence over all."""
    scores = [r.score for r in records if r.score is not None]
    avg_score = mean(scores) if scores else None
    avg_confidence = mean(r.confidence for r in records) if records else None
    return avg_score, avg_confidence


def adjusted_difficulty(
    current: Difficulty,
    avg_score: Optional[float],
    avg_confidence: Optional[float],
    high_alert: bool = False,
) -> Optional[Difficulty]:
    """New difficulty for a task, or None to leave it alone.

    A HIGH-severity alert lowers the task one level whenever the score rules
    produced no change of their own.
    """
    new: Optional[Difficulty] = None
    if avg_confidence is not None:
        if avg_score is not None and avg_score >= RAISE_SCORE and avg_confidence >= RAISE_CONFIDENCE:
            if current == Difficulty.EASY:
                new = Difficulty.MEDIUM
            elif current == Difficulty.MEDIUM and avg_score >= RAISE_TO_HARD_SCORE:
                new = Difficulty.HARD
        elif (avg_score is not None and avg_score <= LOWER_SCORE) or avg_confidence <= LOWER_CONFIDENCE:
            if current == Difficulty.HARD:
                new = Difficulty.MEDIUM
            elif current == Difficulty.MEDIUM and avg_score is not None and avg_score <= LOWER_TO_EASY_SCORE:
                new = Difficulty.EASY
    if new is None and high_alert and current != Difficulty.EASY:
        new = current.easier()
    return new


class DifficultyAdjuster:
    name = "difficulty"

    async def run(self, store: PlanStore, snapshot: AdaptationSnapshot) -> List[AdaptationAction]:
        by_topic = snapshot.performances_by_topic()
        perf_alerts = [a for a in snapshot.alerts if a.alert_type in PERFORMANCE_ALERT_TYPES]
        high_alert_topics = {a.related_topic_id for a in perf_alerts if a.severity == Severity.HIGH}
        averages: Dict[str, Tuple[Optional[float], Optional[float]]] = {}
        changed_topics: Set[str] = set()
        actions: List[AdaptationAction] = []

        for task in snapshot.future_pending_tasks():
            if task.topic_id not in averages:
                averages[task.topic_id] = topic_averages(by_topic.get(task.topic_id, []))
            avg_score, avg_confidence = averages[task.topic_id]
            new = adjusted_difficulty(task.difficulty, avg_score, avg_confidence, task.topic_id in high_alert_topics)
            if new is None or new == task.difficulty:
                continue

            await store.update_task(task.task_id, difficulty=new)
            changed_topics.add(task.topic_id)
            actions.append(
                AdaptationAction(
                    action_type=AdaptationActionType.ADJUST_DIFFICULTY,
                    description=f"Changed difficulty of '{task.title or task.topic_id}' from {task.difficulty.value} to {new.value}",
                    affected_task_ids=[task.task_id],
                    metadata={
                        "topic_id": task.topic_id,
                        "from": task.difficulty.value,
                        "to": new.value,
                        "average_score": avg_score,
                        "average_confidence": avg_confidence,
                    },
                )
            )

        for topic_id in sorted(changed_topics):
            resolved = await resolve_alerts(
                store,
                [a for a in perf_alerts if a.related_topic_id == topic_id],
                snapshot.now,
            )
            if resolved:
                logger.debug("Resolved %d performance alerts for %s", len(resolved), topic_id)
        return actions
