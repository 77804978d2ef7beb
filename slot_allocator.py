from __future__ import annotations

import logging
import math
import random
from collections import deque
from datetime import date, datetime, time, timedelta
from typing import Deque, Dict, List, Optional, Set, Tuple

from models import ScheduleDay, TaskSpec, TaskType, Topic

logger = logging.getLogger(__name__)

CAPACITY_RESERVE = 0.8  # remainder of the calendar is kept for reviews
MIN_TASK_MINUTES = 30
CHUNK_MINUTES = 30

TASK_TYPE_WEIGHTS: List[Tuple[TaskType, float]] = [
    (TaskType.READING, 0.3),
    (TaskType.VIDEO, 0.3),
    (TaskType.QUIZ, 0.3),
    (TaskType.PRACTICE, 0.1),
]

MAX_BALANCE_ITERATIONS = 5
BALANCE_THRESHOLD = 1.2

DEFAULT_DAY_START_HOUR = 9
FALLBACK_START_HOUR = 17
PROBE_STEP_MINUTES = 15
MAX_PROBES = 96
TASK_BUFFER_MINUTES = 5
MINUTES_PER_DAY = 24 * 60


def scale_durations(topics: List[Topic], total_available: int) -> Dict[str, int]:
    total = sum(t.estimated_duration for t in topics)
    multiplier = 1.0
    if total <= 0:
        logger.warning("Topics have no estimated duration; skipping duration scaling")
    elif total > CAPACITY_RESERVE * total_available:
        multiplier = CAPACITY_RESERVE * total_available / total
        logger.info(
            "Estimated %d min exceeds %.0f%% of %d available min; scaling durations by %.3f",
            total,
            CAPACITY_RESERVE * 100,
            total_available,
            multiplier,
        )
    return {t.topic_id: max(MIN_TASK_MINUTES, math.floor(t.estimated_duration * multiplier)) for t in topics}


def draw_task_type(rng: random.Random) -> TaskType:
    types = [t for t, _ in TASK_TYPE_WEIGHTS]
    weights = [w for _, w in TASK_TYPE_WEIGHTS]
    return rng.choices(types, weights=weights, k=1)[0]


def allocate_topics(
    ordered_topics: List[Topic],
    availability: Dict[date, int],
    rng: Optional[random.Random] = None,
) -> Tuple[List[ScheduleDay], List[Tuple[str, int]]]:
    """Round-robin first-fit of topics into days.

    Returns the schedule and the (topic_id, minutes) pieces that could not be placed.
    """
    rng = rng or random.Random(42)
    schedule = [ScheduleDay(day=d, available_minutes=m) for d, m in sorted(availability.items())]
    if not schedule:
        return schedule, [(t.topic_id, t.estimated_duration) for t in ordered_topics]

    durations = scale_durations(ordered_topics, sum(availability.values()))
    queue: Deque[Tuple[Topic, int]] = deque((t, durations[t.topic_id]) for t in ordered_topics)
    dropped: List[Tuple[str, int]] = []
    pointer = 0

    while queue:
        topic, duration = queue.popleft()
        placed = False
        for _ in range(len(schedule)):
            day = schedule[pointer]
            pointer = (pointer + 1) % len(schedule)
            if day.available_minutes >= duration:
                day.tasks.append(TaskSpec(topic.topic_id, duration, draw_task_type(rng), topic.difficulty))
                day.available_minutes -= duration
                placed = True
                break
        if placed:
            continue
        if duration > CHUNK_MINUTES:
            chunks = math.ceil(duration / CHUNK_MINUTES)
            chunk_minutes = duration // chunks
            logger.debug("Splitting %s (%d min) into %d chunks of %d min", topic.topic_id, duration, chunks, chunk_minutes)
            for _ in range(chunks):
                queue.append((topic, chunk_minutes))
        else:
            logger.info("No capacity left for %s (%d min); dropping it", topic.topic_id, duration)
            dropped.append((topic.topic_id, duration))

    return schedule, dropped


def balance_schedule(schedule: List[ScheduleDay], max_iterations: int = MAX_BALANCE_ITERATIONS) -> int:
    """Move long tasks off the busiest day; at most max_iterations moves."""
    moves = 0
    for _ in range(max_iterations):
        total = sum(len(d.tasks) for d in schedule)
        if not schedule or total == 0:
            break
        mean = total / len(schedule)
        busiest = max(schedule, key=lambda d: len(d.tasks))
        if len(busiest.tasks) <= BALANCE_THRESHOLD * mean:
            break

        movable = [t for t in busiest.tasks if t.task_type != TaskType.REVIEW]
        if not movable:
            break
        task = max(movable, key=lambda t: t.duration)
        targets = [
            d
            for d in schedule
            if d is not busiest and d.available_minutes >= task.duration and len(d.tasks) + 1 < len(busiest.tasks)
        ]
        if not targets:
            break
        target = min(targets, key=lambda d: len(d.tasks))

        busiest.tasks.remove(task)
        busiest.available_minutes += task.duration
        target.tasks.append(task)
        target.available_minutes -= task.duration
        moves += 1
        logger.debug("Balanced %s (%d min) from %s to %s", task.topic_id, task.duration, busiest.day, target.day)
    return moves


def _is_free(occupied: Set[int], start: int, duration: int) -> bool:
    return all(m not in occupied for m in range(start, start + duration))


def _first_free(occupied: Set[int], cursor: int, duration: int, limit: int) -> Optional[int]:
    for probe in range(MAX_PROBES + 1):
        candidate = cursor + probe * PROBE_STEP_MINUTES
        if candidate + duration > limit:
            return None
        if _is_free(occupied, candidate, duration):
            return candidate
    return None


def materialize_day(
    day: date,
    specs: List[TaskSpec],
    start_hour: int = DEFAULT_DAY_START_HOUR,
    end_hour: Optional[int] = None,
) -> List[Tuple[TaskSpec, datetime, datetime]]:
    """Turn a day's specs into concrete windows, longest first.

    Windows are probed inside [start_hour, end_hour) first. A spec that does not
    fit there spills past end_hour before the fixed late-afternoon fallback.
    """
    occupied: Set[int] = set()
    cursor = start_hour * 60
    window_end = end_hour * 60 if end_hour is not None else MINUTES_PER_DAY
    midnight = datetime.combine(day, time(0, 0))
    placed: List[Tuple[TaskSpec, datetime, datetime]] = []

    for spec in sorted(specs, key=lambda s: s.duration, reverse=True):
        start = _first_free(occupied, cursor, spec.duration, window_end)
        if start is None and window_end < MINUTES_PER_DAY:
            start = _first_free(occupied, cursor, spec.duration, MINUTES_PER_DAY)
            if start is not None:
                logger.debug("%s on %s runs past %02d:00", spec.topic_id, day.isoformat(), end_hour)
        if start is None:
            start = FALLBACK_START_HOUR * 60
            if start + spec.duration > window_end and window_end - spec.duration >= start_hour * 60:
                start = window_end - spec.duration
            logger.warning(
                "No free window for %s (%d min) on %s; falling back to %02d:%02d",
                spec.topic_id,
                spec.duration,
                day.isoformat(),
                start // 60,
                start % 60,
            )
        occupied.update(range(start, start + spec.duration))
        cursor = start + spec.duration + TASK_BUFFER_MINUTES
        start_dt = midnight + timedelta(minutes=start)
        placed.append((spec, start_dt, start_dt + timedelta(minutes=spec.duration)))
    return placed
