from __future__ import annotations

import logging
from datetime import timedelta
from typing import List

from models import AdaptationAction, AdaptationActionType, AdaptationSnapshot, AlertType, TaskStatus
from slot_finder import find_available_time_slot, find_slot_in_day, move_fields
from store import PlanStore, resolve_alerts

logger = logging.getLogger(__name__)


class MissedTaskRescheduler:
    """Move PENDING tasks whose window has already passed to the next free slot."""

    name = "missed_tasks"

    async def run(self, store: PlanStore, snapshot: AdaptationSnapshot) -> List[AdaptationAction]:
        now = snapshot.now
        prefs = snapshot.learner.preferences
        exam_date = snapshot.plan.exam_date
        missed = sorted(
            (t for t in snapshot.tasks if t.status == TaskStatus.PENDING and t.end_time < now),
            key=lambda t: t.start_time,
        )
        if not missed:
            return []

        busy = snapshot.busy
        missed_alerts = [a for a in snapshot.alerts if a.alert_type == AlertType.MISSED_TASK]
        tomorrow = now.date() + timedelta(days=1)
        actions: List[AdaptationAction] = []

        for task in missed:
            slot = find_available_time_slot(task.duration, busy, prefs, tomorrow, exam_date)
            if slot is None:
                last_day = exam_date - timedelta(days=1)
                slot = find_slot_in_day(last_day, task.duration, busy, prefs.start_hour, prefs.end_hour, not_before=now)
            if slot is None:
                logger.info("No slot found for missed task %s (%d min); leaving it missed", task.task_id, task.duration)
                continue

            snapshot.reserve(slot)
            await store.update_task(task.task_id, **move_fields(task, *slot))
            resolved = await resolve_alerts(
                store,
                [a for a in missed_alerts if a.related_task_id == task.task_id],
                now,
            )
            actions.append(
                AdaptationAction(
                    action_type=AdaptationActionType.RESCHEDULE_MISSED_TASK,
                    description=f"Rescheduled missed task '{task.title or task.topic_id}' to {slot[0]:%Y-%m-%d %H:%M}",
                    affected_task_ids=[task.task_id],
                    metadata={
                        "from": task.start_time.isoformat(),
                        "to": slot[0].isoformat(),
                        "resolved_alert_ids": resolved,
                    },
                )
            )
            logger.debug("Moved missed task %s from %s to %s", task.task_id, task.start_time, slot[0])
        return actions
