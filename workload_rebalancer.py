from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, List, Optional

from models import AdaptationAction, AdaptationActionType, AdaptationSnapshot, Task, Window
from slot_finder import move_fields, overlaps
from store import PlanStore

logger = logging.getLogger(__name__)

MIN_FUTURE_TASKS = 5
OVERLOAD_RATIO = 1.2
UNDERLOAD_RATIO = 0.8
MIN_OVERLOADED_TASKS = 3
TARGET_RATIO = 1.1


def same_time_on(day: date, task: Task) -> Window:
    start = datetime.combine(day, task.start_time.time())
    return start, start + (task.end_time - task.start_time)


class WorkloadRebalancer:
    """Spread future tasks from overloaded days onto later, lighter days at the same time of day."""

    name = "workload"

    async def run(self, store: PlanStore, snapshot: AdaptationSnapshot) -> List[AdaptationAction]:
        future = snapshot.future_pending_tasks()
        if len(future) < MIN_FUTURE_TASKS:
            return []

        by_day: Dict[date, List[Task]] = defaultdict(list)
        for task in future:
            by_day[task.start_time.date()].append(task)
        mean = len(future) / len(by_day)
        counts = {day: len(tasks) for day, tasks in by_day.items()}
        overloaded = sorted(
            (d for d, c in counts.items() if c > OVERLOAD_RATIO * mean and c >= MIN_OVERLOADED_TASKS),
            key=lambda d: (-counts[d], d),
        )
        underloaded = {d for d, c in counts.items() if c < UNDERLOAD_RATIO * mean}
        if not overloaded or not underloaded:
            return []

        actions: List[AdaptationAction] = []
        for day in overloaded:
            to_move = max(1, math.ceil(counts[day] - TARGET_RATIO * mean))
            candidates = sorted((t for t in by_day[day] if not t.is_review), key=lambda t: (t.duration, t.start_time))
            moved = 0
            for task in candidates:
                if moved >= to_move:
                    break
                target = self._pick_target(task, day, underloaded, counts, mean, snapshot.busy)
                if target is None:
                    continue
                window = same_time_on(target, task)
                snapshot.reserve(window, release=(task.start_time, task.end_time))
                await store.update_task(task.task_id, **move_fields(task, *window))
                counts[day] -= 1
                counts[target] += 1
                moved += 1
                actions.append(
                    AdaptationAction(
                        action_type=AdaptationActionType.REBALANCE_WORKLOAD,
                        description=f"Moved '{task.title or task.topic_id}' from {day.isoformat()} to {target.isoformat()}",
                        affected_task_ids=[task.task_id],
                        metadata={"from_date": day.isoformat(), "to_date": target.isoformat(), "mean_per_day": round(mean, 2)},
                    )
                )
            if moved < to_move:
                logger.info("Could only move %d of %d tasks off %s", moved, to_move, day)
        return actions

    @staticmethod
    def _pick_target(
        task: Task,
        source: date,
        underloaded: set,
        counts: Dict[date, int],
        mean: float,
        busy: List[Window],
    ) -> Optional[date]:
        eligible = sorted(
            (d for d in underloaded if d > source and counts[d] < mean),
            key=lambda d: (counts[d], d),
        )
        for day in eligible:
            window = same_time_on(day, task)
            if not any(overlaps(window, other) for other in busy):
                return day
        return None
