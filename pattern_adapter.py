from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from models import (
    AdaptationAction,
    AdaptationActionType,
    AdaptationSnapshot,
    AlertType,
    TaskStatus,
    TimeOfDay,
)
from slot_finder import find_slot_in_day, move_fields
from store import PlanStore, resolve_alerts

logger = logging.getLogger(__name__)

STUDY_WINDOWS: Dict[TimeOfDay, Tuple[int, int]] = {
    TimeOfDay.MORNING: (7, 12),
    TimeOfDay.AFTERNOON: (12, 17),
    TimeOfDay.EVENING: (17, 22),
    TimeOfDay.NIGHT: (20, 24),
}
MIN_COMPLETED_TASKS = 2
MIN_FUTURE_TASKS = 2
MAX_TASKS_MOVED = 10
PREFERENCE_MIN_MOVED = 5
PREFERENCE_MIN_FRACTION = 0.3


def bucket_for_hour(hour: int) -> TimeOfDay:
    if 5 <= hour < 12:
        return TimeOfDay.MORNING
    if 12 <= hour < 17:
        return TimeOfDay.AFTERNOON
    if 17 <= hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def dominant_bucket(timestamps: List[datetime]) -> Optional[TimeOfDay]:
    """Bucket holding strictly more completions than any other, if one does."""
    counts = Counter(bucket_for_hour(ts.hour) for ts in timestamps)
    if not counts:
        return None
    ranked = counts.most_common()
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return None
    return ranked[0][0]


class PatternAdapter:
    """Re-time future tasks toward the part of the day the learner actually studies in."""

    name = "study_pattern"

    async def run(self, store: PlanStore, snapshot: AdaptationSnapshot) -> List[AdaptationAction]:
        pattern_alerts = [a for a in snapshot.alerts if a.alert_type == AlertType.STUDY_PATTERN]
        if not pattern_alerts and not snapshot.performances:
            return []

        completed = [t for t in snapshot.tasks if t.status == TaskStatus.COMPLETED]
        future = snapshot.future_pending_tasks()
        if len(completed) < MIN_COMPLETED_TASKS or len(future) < MIN_FUTURE_TASKS:
            return []

        completed_at = {
            p.task_id: p.created_at for p in snapshot.performances if p.completed and p.created_at is not None
        }
        timestamps = [completed_at.get(t.task_id, t.end_time) for t in completed]
        detected = dominant_bucket(timestamps)
        current = snapshot.learner.preferences.preferred_study_time
        if detected is None or detected == current:
            return []

        window_start, window_end = STUDY_WINDOWS[detected]
        midpoint = (window_start + window_end) // 2
        outside = [t for t in future if not (window_start <= t.start_time.hour < window_end)][:MAX_TASKS_MOVED]

        moved: List[str] = []
        for task in outside:
            own = (task.start_time, task.end_time)
            busy = [w for w in snapshot.busy if w != own]
            day = task.start_time.date()
            slot = find_slot_in_day(day, task.duration, busy, midpoint, window_end, not_before=snapshot.now)
            if slot is None:
                slot = find_slot_in_day(day, task.duration, busy, window_start, window_end, not_before=snapshot.now)
            if slot is None:
                logger.debug("No %s slot on %s for task %s", detected.value, day, task.task_id)
                continue
            snapshot.reserve(slot, release=own)
            await store.update_task(task.task_id, **move_fields(task, *slot))
            moved.append(task.task_id)

        if not moved:
            return []

        preference_updated = len(moved) >= PREFERENCE_MIN_MOVED or len(moved) >= PREFERENCE_MIN_FRACTION * len(future)
        resolved: List[str] = []
        if preference_updated:
            await store.update_preferred_study_time(snapshot.learner.learner_id, detected)
            resolved = await resolve_alerts(store, pattern_alerts, snapshot.now)
            logger.info("Preferred study time for %s changed from %s to %s", snapshot.learner.learner_id, current.value, detected.value)

        return [
            AdaptationAction(
                action_type=AdaptationActionType.ADJUST_TO_STUDY_PATTERN,
                description=f"Moved {len(moved)} task(s) into the {detected.value} window",
                affected_task_ids=moved,
                metadata={
                    "detected": detected.value,
                    "previous_preference": current.value,
                    "preference_updated": preference_updated,
                    "resolved_alert_ids": resolved,
                },
            )
        ]
