from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Set

from errors import PreconditionError

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def weekday_indexes(available_days: Iterable[str]) -> Set[int]:
    """Map weekday names ("Monday", "mon", ...) to date.weekday() indexes."""
    indexes: Set[int] = set()
    for name in available_days:
        key = name.strip().lower()[:3]
        matches = [i for i, full in enumerate(WEEKDAY_NAMES) if full.lower().startswith(key)]
        if not key or not matches:
            logger.warning("Ignoring unknown weekday name %r", name)
            continue
        indexes.add(matches[0])
    return indexes


def is_available_day(day: date, available_days: Iterable[str]) -> bool:
    return day.weekday() in weekday_indexes(available_days)


def study_days(start_date: date, exam_date: date, available_days: Iterable[str]) -> List[date]:
    """Days in [start_date, exam_date) falling on one of the learner's weekdays."""
    allowed = weekday_indexes(available_days)
    days: List[date] = []
    current = start_date
    while current < exam_date:
        if current.weekday() in allowed:
            days.append(current)
        current += timedelta(days=1)
    return days


def build_daily_availability(
    start_date: date,
    exam_date: date,
    available_days: Iterable[str],
    study_hours_per_day: float,
) -> Dict[date, int]:
    minutes = int(study_hours_per_day * 60)
    availability = {d: minutes for d in study_days(start_date, exam_date, available_days)}
    if not availability or minutes <= 0:
        raise PreconditionError(
            f"No study days available between {start_date.isoformat()} and exam {exam_date.isoformat()}"
        )
    return availability
