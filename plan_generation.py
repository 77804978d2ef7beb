from __future__ import annotations

import logging
import random
import uuid
from datetime import date, datetime
from typing import List, Optional

from availability import build_daily_availability
from difficulty_curve import apply_difficulty_curve
from errors import PreconditionError
from models import (
    DiagnosticResult,
    PlanGenerationResult,
    StudyPlan,
    Task,
    TaskStatus,
    TaskType,
    Topic,
)
from plan_validator import (
    DEFAULT_MAX_DAILY_MINUTES,
    DEFAULT_MAX_DIFFICULTY_JUMP,
    DEFAULT_MIN_REVIEW_GAP_DAYS,
    DEFAULT_MIN_REVIEWS,
    validate_plan,
)
from review_scheduler import schedule_reviews
from slot_allocator import allocate_topics, balance_schedule, materialize_day
from store import PlanStore
from topic_graph import TopicGraph

logger = logging.getLogger(__name__)


def task_title(task_type: TaskType, topic: Topic) -> str:
    return f"{task_type.value.title()}: {topic.name}"


async def generate_initial_plan(
    store: PlanStore,
    learner_id: str,
    topics: Optional[List[Topic]] = None,
    diagnostic: Optional[DiagnosticResult] = None,
    start_date: Optional[date] = None,
    seed: int = 42,
    max_daily_minutes: int = DEFAULT_MAX_DAILY_MINUTES,
    max_difficulty_jump: float = DEFAULT_MAX_DIFFICULTY_JUMP,
    min_reviews: int = DEFAULT_MIN_REVIEWS,
    min_review_gap_days: int = DEFAULT_MIN_REVIEW_GAP_DAYS,
) -> PlanGenerationResult:
    """Build, persist and validate a learner's day-by-day plan.

    Every precondition is checked before the first write. If the learner
    already has a plan it is reused with a bumped version and its remaining
    PENDING tasks are marked SKIPPED so the new tasks do not overlap them.
    """
    learner = await store.get_learner(learner_id)
    if learner is None:
        raise PreconditionError(f"Unknown learner: {learner_id}")
    if topics is None:
        topics = await store.list_topics()
    if not topics:
        raise PreconditionError("Topic catalog is empty")
    if learner.exam_date is None:
        raise PreconditionError(f"Learner {learner_id} has no exam date")
    if sum(t.estimated_duration for t in topics) <= 0:
        raise PreconditionError("Topics have a total estimated duration of zero")

    start_date = start_date or date.today()
    prefs = learner.preferences
    availability = build_daily_availability(
        start_date=start_date,
        exam_date=learner.exam_date,
        available_days=prefs.available_days,
        study_hours_per_day=prefs.study_hours_per_day,
    )

    if diagnostic is None:
        diagnostic = await store.get_latest_diagnostic(learner_id)
    usable = diagnostic is not None and diagnostic.is_usable
    notes: List[str] = []

    graph = TopicGraph(topics, diagnostic if usable else None)
    for topic_id, unknown in graph.find_missing_prerequisites().items():
        notes.append(f"Topic {topic_id} references unknown prerequisites: {', '.join(unknown)}.")
    ordered = graph.ordered_topics()

    schedule, dropped = allocate_topics(ordered, availability, random.Random(seed))
    for topic_id, minutes in dropped:
        notes.append(f"Could not place {minutes} min of {topic_id}; no capacity left.")
    moves = balance_schedule(schedule)
    if moves:
        notes.append(f"Balance pass moved {moves} task(s).")
    apply_difficulty_curve(schedule, diagnostic.score if usable else None)
    reviews = schedule_reviews(schedule, ordered, learner.exam_date, diagnostic if usable else None)
    notes.append(f"Scheduled {reviews} review session(s).")

    by_id = {t.topic_id: t for t in topics}
    now = datetime.now()

    # writes start here
    existing = await store.get_plan_by_learner(learner_id)
    if existing is not None:
        plan = await store.update_plan(existing.plan_id, current_version=existing.current_version + 1)
        stale = await store.list_tasks(plan.plan_id, status=TaskStatus.PENDING)
        for task in stale:
            await store.update_task(task.task_id, status=TaskStatus.SKIPPED)
        logger.info("Regenerating plan %s as version %d; skipped %d old tasks", plan.plan_id, plan.current_version, len(stale))
    else:
        plan = await store.create_plan(
            StudyPlan(
                plan_id=str(uuid.uuid4()),
                learner_id=learner_id,
                start_date=start_date,
                end_date=max(availability),
                exam_date=learner.exam_date,
            )
        )

    tasks: List[Task] = []
    for day in schedule:
        for spec, start, end in materialize_day(day.day, day.tasks, prefs.start_hour, prefs.end_hour):
            topic = by_id[spec.topic_id]
            task = Task(
                task_id=str(uuid.uuid4()),
                plan_id=plan.plan_id,
                topic_id=spec.topic_id,
                task_type=spec.task_type,
                start_time=start,
                end_time=end,
                duration=spec.duration,
                difficulty=spec.difficulty,
                title=task_title(spec.task_type, topic),
                description=topic.description,
                created_at=now,
            )
            tasks.append(await store.create_task(task))

    validation = validate_plan(
        tasks,
        topics,
        max_daily_minutes=max_daily_minutes,
        max_difficulty_jump=max_difficulty_jump,
        min_reviews=min_reviews,
        min_review_gap_days=min_review_gap_days,
        study_days=[d.day for d in schedule],
    )
    if not validation.is_valid:
        logger.warning(
            "Plan %s has validation findings: %s",
            plan.plan_id,
            {name: len(items) for name, items in validation.issues.items() if items},
        )

    plan = await store.update_plan(plan.plan_id, is_personalized=usable)
    logger.info(
        "Generated plan %s for %s: %d tasks over %d study days",
        plan.plan_id,
        learner_id,
        len(tasks),
        len(schedule),
    )
    return PlanGenerationResult(plan=plan, schedule=schedule, tasks=tasks, validation=validation, notes=notes)
