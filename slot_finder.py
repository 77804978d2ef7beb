from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from availability import weekday_indexes
from models import LearnerPreferences, Task, Window

logger = logging.getLogger(__name__)

SLOT_STEP_MINUTES = 15


def at_hour(day: date, hour: int) -> datetime:
    # hour 24 means the following midnight
    return datetime.combine(day, time(0, 0)) + timedelta(hours=hour)


def round_up_to_step(moment: datetime, step: int = SLOT_STEP_MINUTES) -> datetime:
    base = moment.replace(second=0, microsecond=0)
    if base < moment:
        base += timedelta(minutes=1)
    remainder = base.minute % step
    if remainder:
        base += timedelta(minutes=step - remainder)
    return base


def overlaps(a: Window, b: Window) -> bool:
    return a[0] < b[1] and b[0] < a[1]


def find_slot_in_day(
    day: date,
    duration: int,
    busy: List[Window],
    start_hour: int,
    end_hour: int,
    not_before: Optional[datetime] = None,
) -> Optional[Window]:
    """First gap of `duration` minutes inside [start_hour, end_hour) on `day`."""
    day_start = at_hour(day, start_hour)
    day_end = at_hour(day, end_hour)
    cursor = day_start
    if not_before is not None and not_before > cursor:
        cursor = round_up_to_step(not_before)
    length = timedelta(minutes=duration)

    for start, end in sorted(w for w in busy if overlaps(w, (day_start, day_end))):
        if end <= cursor:
            continue
        if start - cursor >= length:
            break
        cursor = max(cursor, end)
    if cursor + length <= day_end:
        return cursor, cursor + length
    return None


def find_available_time_slot(
    duration: int,
    busy: List[Window],
    preferences: LearnerPreferences,
    search_from: date,
    exam_date: date,
    not_before: Optional[datetime] = None,
) -> Optional[Window]:
    """Scan day by day from `search_from` up to the day before the exam."""
    allowed = weekday_indexes(preferences.available_days)
    day = search_from
    while day < exam_date:
        if day.weekday() in allowed:
            slot = find_slot_in_day(day, duration, busy, preferences.start_hour, preferences.end_hour, not_before)
            if slot is not None:
                return slot
        day += timedelta(days=1)
    logger.debug("No %d-minute slot between %s and %s", duration, search_from, exam_date)
    return None


def move_fields(task: Task, start: datetime, end: datetime) -> dict:
    """update_task fields for a move; the first move records the original window."""
    fields = {"start_time": start, "end_time": end}
    if task.original_start_time is None:
        fields["original_start_time"] = task.start_time
    if task.original_end_time is None:
        fields["original_end_time"] = task.end_time
    return fields
