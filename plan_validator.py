from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from models import Task, Topic, ValidationReport

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAILY_MINUTES = 4 * 60
DEFAULT_MAX_DIFFICULTY_JUMP = 1.0
DEFAULT_MIN_REVIEWS = 2
DEFAULT_MIN_REVIEW_GAP_DAYS = 2
EMPTY_DAY_DIFFICULTY = 1.0


def first_study_dates(tasks: Iterable[Task]) -> Dict[str, date]:
    first: Dict[str, date] = {}
    for task in tasks:
        if task.is_review:
            continue
        day = task.start_time.date()
        if task.topic_id not in first or day < first[task.topic_id]:
            first[task.topic_id] = day
    return first


def check_prerequisites(tasks: List[Task], topics: List[Topic]) -> List[Dict]:
    first = first_study_dates(tasks)
    issues: List[Dict] = []
    for topic in topics:
        topic_day = first.get(topic.topic_id)
        if topic_day is None:
            continue
        for prereq in topic.prerequisites:
            prereq_day = first.get(prereq)
            if prereq_day is None:
                issues.append(
                    {
                        "topic_id": topic.topic_id,
                        "prerequisite_id": prereq,
                        "issue": "prerequisite not scheduled",
                    }
                )
            elif prereq_day > topic_day:
                issues.append(
                    {
                        "topic_id": topic.topic_id,
                        "prerequisite_id": prereq,
                        "issue": "prerequisite scheduled after topic",
                        "topic_date": topic_day.isoformat(),
                        "prerequisite_date": prereq_day.isoformat(),
                    }
                )
    return issues


def _tasks_by_day(tasks: Iterable[Task]) -> Dict[date, List[Task]]:
    by_day: Dict[date, List[Task]] = defaultdict(list)
    for task in tasks:
        by_day[task.start_time.date()].append(task)
    return by_day


def check_workload(tasks: List[Task], max_daily_minutes: int = DEFAULT_MAX_DAILY_MINUTES) -> List[Dict]:
    issues: List[Dict] = []
    for index, (day, day_tasks) in enumerate(sorted(_tasks_by_day(tasks).items())):
        minutes = sum(t.duration for t in day_tasks)
        if minutes > max_daily_minutes:
            issues.append(
                {
                    "day_index": index,
                    "date": day.isoformat(),
                    "total_minutes": minutes,
                    "overloaded_by": minutes - max_daily_minutes,
                }
            )
    return issues


def check_difficulty_progression(
    tasks: List[Task],
    max_jump: float = DEFAULT_MAX_DIFFICULTY_JUMP,
    study_days: Optional[List[date]] = None,
) -> List[Dict]:
    by_day = _tasks_by_day(tasks)
    days = sorted(study_days) if study_days is not None else sorted(by_day)
    averages = []
    for day in days:
        day_tasks = by_day.get(day, [])
        if day_tasks:
            averages.append(sum(t.difficulty.rank for t in day_tasks) / len(day_tasks))
        else:
            averages.append(EMPTY_DAY_DIFFICULTY)

    issues: List[Dict] = []
    for i in range(1, len(days)):
        jump = abs(averages[i] - averages[i - 1])
        if jump > max_jump:
            issues.append(
                {
                    "day_index": i,
                    "date": days[i].isoformat(),
                    "previous_average": round(averages[i - 1], 2),
                    "average": round(averages[i], 2),
                    "jump": round(jump, 2),
                }
            )
    return issues


def check_spaced_repetition(
    tasks: List[Task],
    min_reviews: int = DEFAULT_MIN_REVIEWS,
    min_gap_days: int = DEFAULT_MIN_REVIEW_GAP_DAYS,
) -> List[Dict]:
    reviews: Dict[str, List[Task]] = defaultdict(list)
    for task in tasks:
        if task.is_review:
            reviews[task.topic_id].append(task)

    issues: List[Dict] = []
    for topic_id in first_study_dates(tasks):
        topic_reviews = sorted(reviews.get(topic_id, []), key=lambda t: t.start_time)
        if len(topic_reviews) < min_reviews:
            issues.append(
                {
                    "topic_id": topic_id,
                    "issue": "too few reviews",
                    "review_count": len(topic_reviews),
                    "required": min_reviews,
                }
            )
        for prev, nxt in zip(topic_reviews, topic_reviews[1:]):
            gap = round((nxt.start_time - prev.start_time).total_seconds() / 86400)
            if gap < min_gap_days:
                issues.append(
                    {
                        "topic_id": topic_id,
                        "issue": "reviews too close together",
                        "gap_days": gap,
                        "first_review": prev.start_time.isoformat(),
                        "second_review": nxt.start_time.isoformat(),
                    }
                )
    return issues


def validate_plan(
    tasks: List[Task],
    topics: List[Topic],
    max_daily_minutes: int = DEFAULT_MAX_DAILY_MINUTES,
    max_difficulty_jump: float = DEFAULT_MAX_DIFFICULTY_JUMP,
    min_reviews: int = DEFAULT_MIN_REVIEWS,
    min_review_gap_days: int = DEFAULT_MIN_REVIEW_GAP_DAYS,
    study_days: Optional[List[date]] = None,
) -> ValidationReport:
    """Run the four advisory checks; findings never raise."""
    report = ValidationReport(
        prerequisite_violations=check_prerequisites(tasks, topics),
        workload_issues=check_workload(tasks, max_daily_minutes),
        difficulty_issues=check_difficulty_progression(tasks, max_difficulty_jump, study_days),
        spaced_repetition_issues=check_spaced_repetition(tasks, min_reviews, min_review_gap_days),
    )
    if not report.is_valid:
        logger.debug(
            "Validation found %d prerequisite, %d workload, %d difficulty, %d review issues",
            len(report.prerequisite_violations),
            len(report.workload_issues),
            len(report.difficulty_issues),
            len(report.spaced_repetition_issues),
        )
    return report
