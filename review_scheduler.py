from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from difficulty_curve import round_half_up
from models import DiagnosticResult, Difficulty, ScheduleDay, TaskSpec, TaskType, Topic

logger = logging.getLogger(__name__)

BASE_INTERVAL_DAYS: Dict[Difficulty, int] = {
    Difficulty.EASY: 7,
    Difficulty.MEDIUM: 5,
    Difficulty.HARD: 3,
}
MIN_PERFORMANCE_FACTOR = 0.7
MAX_PERFORMANCE_FACTOR = 1.3
DEFAULT_REVIEW_COUNT = 2
WEAK_AREA_REVIEW_COUNT = 4
REVIEW_MINUTES = 20
SNAP_WINDOW_DAYS = 2
MIN_REVIEW_GAP_DAYS = 2


def review_multiplier(review_index: int) -> float:
    return 1.0 if review_index == 0 else review_index * 1.5


def performance_factor(score: Optional[float]) -> float:
    """Interval multiplier: 0.7 at score 0 (review sooner), 1.3 at score 100, 1.0 without a score."""
    if score is None:
        return 1.0
    factor = MIN_PERFORMANCE_FACTOR + (MAX_PERFORMANCE_FACTOR - MIN_PERFORMANCE_FACTOR) * score / 100
    return min(MAX_PERFORMANCE_FACTOR, max(MIN_PERFORMANCE_FACTOR, factor))


def review_interval_days(difficulty: Difficulty, review_index: int, factor: float = 1.0) -> int:
    return round_half_up(BASE_INTERVAL_DAYS[difficulty] * review_multiplier(review_index) * factor)


def snap_to_schedule(target: date, schedule: List[ScheduleDay], window: int = SNAP_WINDOW_DAYS) -> Optional[ScheduleDay]:
    best: Optional[ScheduleDay] = None
    best_distance = window + 1
    for day in schedule:
        distance = abs((day.day - target).days)
        if distance <= window and distance < best_distance:
            best = day
            best_distance = distance
    return best


def first_study_day(schedule: List[ScheduleDay], topic_id: str) -> Optional[date]:
    for day in schedule:
        if any(s.topic_id == topic_id and s.task_type != TaskType.REVIEW for s in day.tasks):
            return day.day
    return None


def schedule_reviews(
    schedule: List[ScheduleDay],
    topics: List[Topic],
    exam_date: date,
    diagnostic: Optional[DiagnosticResult] = None,
) -> int:
    """Append REVIEW specs into spare capacity. Returns how many were added."""
    usable = diagnostic is not None and diagnostic.is_usable
    factor = performance_factor(diagnostic.score if usable else None)
    weak_areas = set(diagnostic.weak_areas) if usable else set()
    added = 0

    for topic in topics:
        studied = first_study_day(schedule, topic.topic_id)
        if studied is None:
            continue
        wanted = WEAK_AREA_REVIEW_COUNT if topic.category in weak_areas else DEFAULT_REVIEW_COUNT
        count = min(wanted, (exam_date - studied).days // 2)

        current = studied
        last_placed: Optional[date] = None
        for i in range(count):
            current = current + timedelta(days=review_interval_days(topic.difficulty, i, factor))
            if current >= exam_date:
                break
            day = snap_to_schedule(current, schedule)
            if day is None or day.day <= studied:
                logger.debug("No schedule day near %s for review of %s", current, topic.topic_id)
                continue
            if last_placed is not None and (day.day - last_placed).days < MIN_REVIEW_GAP_DAYS:
                logger.debug("Review of %s on %s too close to previous one; dropping", topic.topic_id, day.day)
                continue
            if day.available_minutes < REVIEW_MINUTES:
                logger.info("No spare capacity on %s for review of %s; dropping", day.day, topic.topic_id)
                continue
            day.tasks.append(TaskSpec(topic.topic_id, REVIEW_MINUTES, TaskType.REVIEW, topic.difficulty))
            day.available_minutes -= REVIEW_MINUTES
            last_placed = day.day
            added += 1
    return added
