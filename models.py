from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"

    @property
    def rank(self) -> int:
        return DIFFICULTY_RANK[self]

    def harder(self) -> "Difficulty":
        return DIFFICULTY_ORDER[min(self.rank + 1, len(DIFFICULTY_ORDER) - 1)]

    def easier(self) -> "Difficulty":
        return DIFFICULTY_ORDER[max(self.rank - 1, 0)]


DIFFICULTY_ORDER = [Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD]
DIFFICULTY_RANK = {d: i for i, d in enumerate(DIFFICULTY_ORDER)}


class TaskType(str, Enum):
    READING = "READING"
    VIDEO = "VIDEO"
    QUIZ = "QUIZ"
    PRACTICE = "PRACTICE"
    REVIEW = "REVIEW"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"


class AlertType(str, Enum):
    MISSED_TASK = "MISSED_TASK"
    LOW_PERFORMANCE = "LOW_PERFORMANCE"
    SCHEDULE_DEVIATION = "SCHEDULE_DEVIATION"
    TOPIC_DIFFICULTY = "TOPIC_DIFFICULTY"
    STUDY_PATTERN = "STUDY_PATTERN"
    GENERAL = "GENERAL"
    REMEDIATION = "REMEDIATION"
    SCHEDULE_CHANGE = "SCHEDULE_CHANGE"


PERFORMANCE_ALERT_TYPES = (AlertType.LOW_PERFORMANCE, AlertType.TOPIC_DIFFICULTY)


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class AdaptationActionType(str, Enum):
    RESCHEDULE_MISSED_TASK = "RESCHEDULE_MISSED_TASK"
    ADJUST_DIFFICULTY = "ADJUST_DIFFICULTY"
    ADD_REVIEW_SESSION = "ADD_REVIEW_SESSION"
    ADD_REMEDIAL_CONTENT = "ADD_REMEDIAL_CONTENT"
    REBALANCE_WORKLOAD = "REBALANCE_WORKLOAD"
    ADJUST_TO_STUDY_PATTERN = "ADJUST_TO_STUDY_PATTERN"


@dataclass
class Topic:
    topic_id: str
    name: str
    category: str
    difficulty: Difficulty = Difficulty.MEDIUM
    importance: int = 5  # 1-10
    estimated_duration: int = 30  # minutes
    prerequisites: List[str] = field(default_factory=list)
    description: str = ""


@dataclass
class LearnerPreferences:
    available_days: List[str] = field(
        default_factory=lambda: ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
    )
    study_hours_per_day: float = 2.0
    preferred_study_time: TimeOfDay = TimeOfDay.MORNING
    start_hour: int = 9
    end_hour: int = 17


@dataclass
class Learner:
    learner_id: str
    name: str
    exam_date: Optional[date] = None
    preferences: LearnerPreferences = field(default_factory=LearnerPreferences)


@dataclass
class DiagnosticResult:
    learner_id: str
    completed: bool = False
    skipped: bool = False
    score: float = 0.0
    weak_areas: List[str] = field(default_factory=list)
    missed_topic_ids: List[str] = field(default_factory=list)  # one entry per wrong answer
    recommended_focus: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def is_usable(self) -> bool:
        return self.completed and not self.skipped


@dataclass
class StudyPlan:
    plan_id: str
    learner_id: str
    start_date: date
    end_date: date
    exam_date: date
    current_version: int = 1
    is_personalized: bool = False


@dataclass
class Task:
    task_id: str
    plan_id: str
    topic_id: str
    task_type: TaskType
    start_time: datetime
    end_time: datetime
    duration: int  # minutes, always end_time - start_time
    difficulty: Difficulty = Difficulty.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    title: str = ""
    description: str = ""
    original_start_time: Optional[datetime] = None
    original_end_time: Optional[datetime] = None
    is_remedial: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_review(self) -> bool:
        return self.task_type == TaskType.REVIEW


@dataclass
class Performance:
    performance_id: str
    learner_id: str
    task_id: str
    topic_id: str
    confidence: int  # 1-5
    completed: bool
    time_spent: int = 0  # minutes
    score: Optional[float] = None  # 0-100
    created_at: Optional[datetime] = None


@dataclass
class Alert:
    alert_id: str
    learner_id: str
    plan_id: str
    alert_type: AlertType
    severity: Severity
    message: str
    related_task_id: Optional[str] = None
    related_topic_id: Optional[str] = None
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


Window = Tuple[datetime, datetime]


@dataclass
class TaskSpec:
    topic_id: str
    duration: int
    task_type: TaskType
    difficulty: Difficulty


@dataclass
class ScheduleDay:
    day: date
    available_minutes: int  # remaining capacity
    tasks: List[TaskSpec] = field(default_factory=list)

    @property
    def scheduled_minutes(self) -> int:
        return sum(t.duration for t in self.tasks)


@dataclass
class ValidationReport:
    prerequisite_violations: List[Dict[str, Any]] = field(default_factory=list)
    workload_issues: List[Dict[str, Any]] = field(default_factory=list)
    difficulty_issues: List[Dict[str, Any]] = field(default_factory=list)
    spaced_repetition_issues: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (
            self.prerequisite_violations
            or self.workload_issues
            or self.difficulty_issues
            or self.spaced_repetition_issues
        )

    @property
    def issues(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "prerequisite_violations": self.prerequisite_violations,
            "workload_issues": self.workload_issues,
            "difficulty_issues": self.difficulty_issues,
            "spaced_repetition_issues": self.spaced_repetition_issues,
        }


@dataclass
class PlanGenerationResult:
    plan: StudyPlan
    schedule: List[ScheduleDay]
    tasks: List[Task]
    validation: ValidationReport
    notes: List[str] = field(default_factory=list)


@dataclass
class AdaptationAction:
    action_type: AdaptationActionType
    description: str
    affected_task_ids: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PassOutcome:
    name: str
    succeeded: bool
    action_count: int = 0
    timed_out: bool = False
    error: Optional[str] = None


@dataclass
class AdaptationResult:
    learner_id: str
    plan_id: str
    actions: List[AdaptationAction] = field(default_factory=list)
    pass_outcomes: List[PassOutcome] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    insights: Optional[Dict[str, Any]] = None

    @property
    def failed_passes(self) -> List[str]:
        return [o.name for o in self.pass_outcomes if not o.succeeded]


@dataclass
class AdaptationSnapshot:
    """State read once at the start of an adaptation run and shared by every pass.

    `busy` holds the occupied windows of future tasks. Passes that place or move
    tasks reserve their windows in it before writing, so the same list must be
    shared by every pass of a run.
    """

    learner: Learner
    plan: StudyPlan
    topics: Dict[str, Topic]
    tasks: List[Task]
    performances: List[Performance]
    alerts: List[Alert]  # unresolved only
    now: datetime
    busy: Optional[List[Window]] = None

    def __post_init__(self) -> None:
        if self.busy is None:
            self.busy = sorted(
                (t.start_time, t.end_time)
                for t in self.tasks
                if t.status != TaskStatus.SKIPPED and t.start_time > self.now
            )

    def reserve(self, window: Window, release: Optional[Window] = None) -> None:
        if release is not None and release in self.busy:
            self.busy.remove(release)
        self.busy.append(window)
        self.busy.sort()

    def future_pending_tasks(self) -> List[Task]:
        return sorted(
            (t for t in self.tasks if t.status == TaskStatus.PENDING and t.start_time > self.now),
            key=lambda t: t.start_time,
        )

    def performances_by_topic(self) -> Dict[str, List[Performance]]:
        grouped: Dict[str, List[Performance]] = {}
        for record in self.performances:
            grouped.setdefault(record.topic_id, []).append(record)
        return grouped
